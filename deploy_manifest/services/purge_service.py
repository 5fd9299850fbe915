"""Foreign-instance conflict resolution and timestamp-based fallback purge."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from deploy_manifest.exceptions import PurgeError, UserCanceledError

if TYPE_CHECKING:
    import os
    from collections.abc import Awaitable, Callable, Sequence

    from deploy_manifest.methods.base import DeploymentMethod
    from deploy_manifest.schemas.manifest import DeployedFile, DeploymentManifest

logger = logging.getLogger(__name__)

DEFAULT_PURGE_CONCURRENCY = 16


class PurgeKind(StrEnum):
    """How risky purging a foreign deployment is."""

    SAFE = "safe"
    UNSAFE = "unsafe"


class PurgeDecision(StrEnum):
    """Answer from the confirmation collaborator."""

    PURGE = "purge"
    CANCEL = "cancel"


class FileStatus(StrEnum):
    """State of a deployed file compared with its manifest record."""

    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    MISSING = "missing"


@dataclass
class PurgeReport:
    """Outcome of a fallback purge, as relative paths."""

    removed: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


_PURGE_TEXT_SAFE = (
    "IMPORTANT: This game was modded by another instance of the mod manager.\n\n"
    "If you switch between different instances it's better to purge mods "
    "before switching.\n\n"
    "We can try to clean up now but this is less reliable (*) than doing it "
    "from the instance that deployed the files in the first place.\n\n"
    "If you modified any files in the game directory you should back them up "
    "before continuing.\n\n"
    "(*) This purge relies on a manifest of deployed files, created by that other "
    "instance. Files that have been changed since that manifest was created "
    "won't be removed to prevent data loss. If the manifest is damaged or "
    "outdated the purge may be incomplete."
)

_PURGE_TEXT_UNSAFE = (
    "IMPORTANT: This game was modded by another instance of the mod manager.\n\n"
    "We can only proceed by purging the mods from that other instance.\n\n"
    "This will irreversibly **destroy** the mod installations from that other "
    "instance!\n\n"
    "You should instead cancel now, open that other instance and purge from there."
)


def purge_prompt_text(kind: PurgeKind) -> str:
    """Return the confirmation text shown before purging a foreign deployment."""
    return _PURGE_TEXT_SAFE if kind is PurgeKind.SAFE else _PURGE_TEXT_UNSAFE


def mtime_ms(stat_result: os.stat_result) -> int:
    """Modification time in whole milliseconds, the unit manifests record."""
    return stat_result.st_mtime_ns // 1_000_000


def resolve_deployed_path(target_dir: Path, rel_path: str) -> Path | None:
    """Join ``rel_path`` onto ``target_dir``; None if it would escape the target.

    Backslash separators (written on Windows) are accepted. The final
    component is not resolved, so deployed symlinks stay addressable.
    """
    rel = PurePosixPath(rel_path.replace("\\", "/"))
    if not rel.parts or rel.is_absolute() or ".." in rel.parts or ":" in rel.parts[0]:
        return None
    return Path(target_dir).joinpath(*rel.parts)


def _classify(path: Path, recorded_time: float) -> FileStatus:
    try:
        stat_result = path.stat()
    except FileNotFoundError:
        return FileStatus.MISSING
    return FileStatus.UNCHANGED if mtime_ms(stat_result) == recorded_time else FileStatus.MODIFIED


def _purge_one(path: Path, recorded_time: float) -> FileStatus:
    status = _classify(path, recorded_time)
    if status is FileStatus.UNCHANGED:
        try:
            path.unlink()
        except FileNotFoundError:
            return FileStatus.MISSING
    return status


def inspect_files(
    target_dir: Path, files: Sequence[DeployedFile]
) -> list[tuple[DeployedFile, FileStatus]]:
    """Compare each recorded file with the target directory without touching anything."""
    result: list[tuple[DeployedFile, FileStatus]] = []
    for deployed in files:
        path = resolve_deployed_path(target_dir, deployed.rel_path)
        status = FileStatus.MODIFIED if path is None else _classify(path, deployed.time)
        result.append((deployed, status))
    return result


async def fallback_purge(
    target_dir: Path,
    files: Sequence[DeployedFile],
    *,
    concurrency: int = DEFAULT_PURGE_CONCURRENCY,
) -> PurgeReport:
    """Remove deployed files whose modification time still matches the manifest.

    Missing files count as already removed. Files with a different mtime were
    changed or redeployed since the manifest was written and are left alone.
    Any other error fails the purge once every file has been processed;
    deletions that already happened are not rolled back.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))
    report = PurgeReport()

    async def _process(deployed: DeployedFile) -> None:
        path = resolve_deployed_path(target_dir, deployed.rel_path)
        if path is None:
            logger.warning("Not purging %r: path leaves %s", deployed.rel_path, target_dir)
            report.kept.append(deployed.rel_path)
            return
        async with semaphore:
            try:
                status = await asyncio.to_thread(_purge_one, path, deployed.time)
            except OSError as exc:
                raise PurgeError(str(exc), [(path, exc)]) from exc
        if status is FileStatus.UNCHANGED:
            report.removed.append(deployed.rel_path)
        elif status is FileStatus.MODIFIED:
            report.kept.append(deployed.rel_path)
        else:
            report.missing.append(deployed.rel_path)

    results = await asyncio.gather(*(_process(f) for f in files), return_exceptions=True)

    failures: list[tuple[Path, OSError]] = []
    for outcome in results:
        if isinstance(outcome, PurgeError):
            failures.extend(outcome.failures)
        elif isinstance(outcome, BaseException):
            raise outcome
    if failures:
        logger.error(
            "Fallback purge in %s failed for %d file(s), removed %d",
            target_dir,
            len(failures),
            len(report.removed),
        )
        path, first = failures[0]
        msg = f"Purging failed for {len(failures)} file(s), first error on {path}: {first}"
        raise PurgeError(msg, failures)

    logger.info(
        "Fallback purge in %s: removed %d, kept %d modified, %d already missing",
        target_dir,
        len(report.removed),
        len(report.kept),
        len(report.missing),
    )
    return report


def is_purge_safe(
    manifest: DeploymentManifest, method_lookup: Callable[[str], DeploymentMethod | None]
) -> bool:
    """A foreign purge is safe only if the recorded method is known and fallback-purge safe."""
    if manifest.deployment_method is None:
        return False
    method = method_lookup(manifest.deployment_method)
    return method is not None and bool(method.is_fallback_purge_safe)


def has_conflict(manifest: DeploymentManifest, instance: str) -> bool:
    """True if another instance deployed files that are still recorded."""
    return manifest.instance != instance and len(manifest.files) > 0


async def confirm_foreign_purge(
    manifest: DeploymentManifest,
    instance: str,
    method_lookup: Callable[[str], DeploymentMethod | None],
    confirm: Callable[[PurgeKind, list[DeployedFile]], Awaitable[PurgeDecision]],
) -> PurgeKind:
    """Ask the user once whether to purge a foreign deployment.

    Returns the purge kind on approval. Declining, or a dialog that fails,
    raises UserCanceledError.
    """
    kind = PurgeKind.SAFE if is_purge_safe(manifest, method_lookup) else PurgeKind.UNSAFE
    logger.warning(
        "Deployment manifest written by instance %r (current %r) lists %d file(s); "
        "asking for %s purge",
        manifest.instance,
        instance,
        len(manifest.files),
        kind,
    )
    try:
        decision = await confirm(kind, list(manifest.files))
    except UserCanceledError:
        raise
    except Exception as exc:
        logger.error("Purge confirmation failed: %s", exc)
        raise UserCanceledError(manifest.instance, instance) from exc
    if decision != PurgeDecision.PURGE:
        logger.info("User declined purging files of instance %r", manifest.instance)
        raise UserCanceledError(manifest.instance, instance)
    return kind
