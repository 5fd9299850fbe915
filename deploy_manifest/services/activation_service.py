"""Load/save entry points for deployment activation records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from deploy_manifest.filesystem.manifest_store import load_manifest, save_manifest
from deploy_manifest.services.purge_service import (
    DEFAULT_PURGE_CONCURRENCY,
    confirm_foreign_purge,
    fallback_purge,
    has_conflict,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping
    from pathlib import Path
    from typing import Any

    from deploy_manifest.methods.base import DeploymentMethod
    from deploy_manifest.schemas.manifest import DeployedFile
    from deploy_manifest.services.purge_service import PurgeDecision, PurgeKind

logger = logging.getLogger(__name__)


async def load_activation(
    mod_type: str | None,
    target_dir: Path | None,
    instance: str,
    method_lookup: Callable[[str], DeploymentMethod | None],
    confirm: Callable[[PurgeKind, list[DeployedFile]], Awaitable[PurgeDecision]],
    *,
    current_method_id: str | None = None,
    concurrency: int = DEFAULT_PURGE_CONCURRENCY,
) -> list[DeployedFile]:
    """Return the files currently deployed to ``target_dir`` by this instance.

    If the manifest was written by another instance and still lists files, the
    user is asked (once) whether to purge them. On approval the files are
    removed by the fallback purge, the manifest is reset for this instance and
    an empty list is returned. Declining raises UserCanceledError with nothing
    changed on disk.
    """
    if target_dir is None:
        return []

    manifest = await load_manifest(target_dir, mod_type, instance)
    if not has_conflict(manifest, instance):
        return list(manifest.files)

    await confirm_foreign_purge(manifest, instance, method_lookup, confirm)
    await fallback_purge(target_dir, manifest.files, concurrency=concurrency)
    await save_manifest(target_dir, mod_type, instance, [], current_method_id)
    logger.info(
        "Purged deployment of instance %r from %s (mod type %r)",
        manifest.instance,
        target_dir,
        mod_type or "",
    )
    return []


async def save_activation(
    mod_type: str | None,
    instance: str,
    target_dir: Path,
    files: Iterable[DeployedFile | Mapping[str, Any]],
    deployment_method_id: str | None = None,
) -> None:
    """Record ``files`` as this instance's deployment to ``target_dir``.

    Mapping entries are validated as DeployedFile records. The encoded
    manifest is checked to parse back before anything is written.
    """
    await save_manifest(target_dir, mod_type, instance, files, deployment_method_id)
