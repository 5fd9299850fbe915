"""Deployment manifest JSON codec: decode with upgrade and repair, encode with self-check."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from deploy_manifest.exceptions import MalformedManifestError, SerializationError
from deploy_manifest.filesystem.manifest_formats import CURRENT_VERSION, upgrade
from deploy_manifest.schemas.manifest import DeployedFile, DeploymentManifest

logger = logging.getLogger(__name__)


def empty_manifest(instance: str) -> DeploymentManifest:
    """Return a manifest with no files, owned by ``instance``."""
    return DeploymentManifest(version=CURRENT_VERSION, instance=instance, files=[])


def _reject_constant(name: str) -> Any:
    msg = f"Deployment manifest contains non-JSON constant {name}"
    raise MalformedManifestError(msg)


def _valid_file(entry: object) -> DeployedFile | None:
    if isinstance(entry, DeployedFile):
        return entry
    if not isinstance(entry, dict):
        return None
    try:
        return DeployedFile.model_validate(entry)
    except ValidationError:
        return None


def repair(data: dict[str, Any] | DeploymentManifest) -> DeploymentManifest:
    """Normalize a manifest that may have been edited by hand or by another tool.

    Never raises. Missing version/instance get defaults and file records that
    lack ``relPath``, ``source`` or ``time`` are dropped, keeping the order of
    the rest.
    """
    if isinstance(data, DeploymentManifest):
        data = data.model_dump(by_alias=True)

    version = data.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        version = CURRENT_VERSION

    instance = data.get("instance")
    if not instance or not isinstance(instance, str):
        instance = ""

    method = data.get("deploymentMethod")
    if not method or not isinstance(method, str):
        method = None

    raw_files = data.get("files")
    if not isinstance(raw_files, list):
        raw_files = []
    files: list[DeployedFile] = []
    for entry in raw_files:
        deployed = _valid_file(entry)
        if deployed is not None:
            files.append(deployed)
    dropped = len(raw_files) - len(files)
    if dropped:
        logger.warning("Dropped %d invalid file record(s) from deployment manifest", dropped)

    return DeploymentManifest(
        version=version,
        instance=instance,
        deployment_method=method,
        files=files,
    )


def decode(raw_text: str) -> DeploymentManifest | None:
    """Parse manifest text. Empty text means no manifest exists yet and returns None.

    Raises MalformedManifestError on invalid JSON and UnsupportedUpgradeError
    if the stored format cannot be brought up to date.
    """
    if raw_text == "":
        return None
    try:
        parsed = json.loads(raw_text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        msg = f"Deployment manifest is not valid JSON: {exc}"
        raise MalformedManifestError(msg) from exc
    if not isinstance(parsed, dict):
        msg = f"Deployment manifest must be a JSON object, got {type(parsed).__name__}"
        raise MalformedManifestError(msg)

    parsed = upgrade(parsed)
    if not isinstance(parsed.get("files"), list):
        parsed["files"] = []
    return repair(parsed)


def _to_document(manifest: DeploymentManifest) -> dict[str, Any]:
    document: dict[str, Any] = {
        "version": manifest.version,
        "instance": manifest.instance,
    }
    if manifest.deployment_method is not None:
        document["deploymentMethod"] = manifest.deployment_method
    document["files"] = [
        {"relPath": f.rel_path, "source": f.source, "time": f.time} for f in manifest.files
    ]
    return document


def encode(manifest: DeploymentManifest) -> str:
    """Serialize a manifest as stable, pretty-printed JSON.

    The output is parsed back before being returned; text that fails to parse
    (e.g. a NaN timestamp) raises SerializationError instead of reaching disk.
    """
    try:
        text = json.dumps(_to_document(manifest), indent=2, ensure_ascii=False, allow_nan=False)
        json.loads(text)
    except (TypeError, ValueError) as exc:
        msg = f"failed to serialize deployment information: {exc}"
        raise SerializationError(msg) from exc
    return text
