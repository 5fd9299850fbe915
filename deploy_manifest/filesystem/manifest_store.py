"""On-disk manifest storage: naming, reading, and atomic replacement."""

from __future__ import annotations

import asyncio
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from deploy_manifest.exceptions import MalformedManifestError, ManifestError, ManifestIOError
from deploy_manifest.filesystem.manifest_codec import decode, empty_manifest, encode
from deploy_manifest.filesystem.manifest_formats import CURRENT_VERSION
from deploy_manifest.schemas.manifest import DeployedFile, DeploymentManifest

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from typing import Any

logger = logging.getLogger(__name__)

MANIFEST_PREFIX = "vortex.deployment"
MANIFEST_SUFFIX = "json"


def manifest_path(target_dir: Path, mod_type: str | None = None) -> Path:
    """Return the manifest file for a deployment target and mod type.

    The default (untyped) deployment uses ``vortex.deployment.json``; a mod
    type ``foo`` uses ``vortex.deployment.foo.json``.
    """
    type_tag = f"{mod_type}." if mod_type else ""
    return Path(target_dir) / f"{MANIFEST_PREFIX}.{type_tag}{MANIFEST_SUFFIX}"


def _target_mode(path: Path) -> int:
    """Permission bits for a replacement of ``path``: the existing file's, else umask-derived."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_atomic(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` so readers never observe a partial file.

    The replacement keeps the permission bits of the file it replaces.
    """
    mode = _target_mode(path)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            os.fchmod(f.fileno(), mode)
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _remove(path: Path) -> bool:
    """Delete ``path``; returns False if it was already gone."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


async def load_manifest(
    target_dir: Path, mod_type: str | None, instance: str
) -> DeploymentManifest:
    """Load the manifest for a target, or an empty one owned by ``instance`` if none exists.

    Read failures other than not-found raise ManifestIOError. Text that is not
    UTF-8 raises MalformedManifestError; parse and upgrade failures keep their
    type. Either way the error carries the manifest path.
    """
    path = manifest_path(target_dir, mod_type)
    try:
        raw = await asyncio.to_thread(_read_text, path)
    except FileNotFoundError:
        return empty_manifest(instance)
    except UnicodeDecodeError as exc:
        msg = f"Deployment manifest is not valid UTF-8: {exc}"
        raise MalformedManifestError(msg, path) from exc
    except OSError as exc:
        logger.error("Failed to read deployment manifest %s: %s", path, exc)
        raise ManifestIOError(str(exc), path) from exc

    try:
        manifest = decode(raw)
    except ManifestError as exc:
        exc.path = path
        raise
    if manifest is None:
        return empty_manifest(instance)
    return manifest


def build_manifest(
    instance: str,
    files: Iterable[DeployedFile | Mapping[str, Any]],
    deployment_method: str | None = None,
) -> DeploymentManifest:
    """Build a current-format manifest; mapping entries are validated as DeployedFile."""
    return DeploymentManifest(
        version=CURRENT_VERSION,
        instance=instance,
        deployment_method=deployment_method or None,
        files=[f if isinstance(f, DeployedFile) else DeployedFile.model_validate(f) for f in files],
    )


async def save_manifest(
    target_dir: Path,
    mod_type: str | None,
    instance: str,
    files: Iterable[DeployedFile | Mapping[str, Any]],
    deployment_method: str | None = None,
) -> None:
    """Replace the manifest for a target with ``files``.

    An empty file list removes the manifest, since no file is the canonical
    "nothing deployed" state. Removing a manifest that does not exist is fine.
    """
    path = manifest_path(target_dir, mod_type)
    manifest = build_manifest(instance, files, deployment_method)
    try:
        text = encode(manifest)
    except ManifestError as exc:
        exc.path = path
        raise

    try:
        if manifest.files:
            await asyncio.to_thread(write_atomic, path, text)
            logger.debug("Wrote deployment manifest %s (%d files)", path, len(manifest.files))
        elif await asyncio.to_thread(_remove, path):
            logger.debug("Removed empty deployment manifest %s", path)
    except OSError as exc:
        logger.error("Failed to update deployment manifest %s: %s", path, exc)
        raise ManifestIOError(str(exc), path) from exc
