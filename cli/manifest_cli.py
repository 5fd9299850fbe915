"""CLI for inspecting and purging deployment manifests."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from deploy_manifest.config import Settings
from deploy_manifest.exceptions import ManifestError, UserCanceledError
from deploy_manifest.filesystem.manifest_store import load_manifest, manifest_path
from deploy_manifest.methods.registry import default_registry
from deploy_manifest.services.activation_service import load_activation, save_activation
from deploy_manifest.services.instance_service import resolve_instance_id
from deploy_manifest.services.purge_service import (
    FileStatus,
    PurgeDecision,
    PurgeKind,
    inspect_files,
    purge_prompt_text,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from deploy_manifest.schemas.manifest import DeployedFile

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure CLI logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stderr,
        force=True,
    )


def console_confirm(
    assume_yes: bool = False,
) -> Callable[[PurgeKind, list[DeployedFile]], Awaitable[PurgeDecision]]:
    """Build a confirmation collaborator that asks on the terminal."""

    async def _confirm(kind: PurgeKind, files: list[DeployedFile]) -> PurgeDecision:
        print(purge_prompt_text(kind))
        print(f"\n{len(files)} file(s) are recorded in the manifest.")
        if assume_yes:
            return PurgeDecision.PURGE
        answer = await asyncio.to_thread(input, "Purge files from different instance? [y/N] ")
        if answer.strip().lower() in {"y", "yes"}:
            return PurgeDecision.PURGE
        return PurgeDecision.CANCEL

    return _confirm


async def cmd_show(target_dir: Path, mod_type: str, instance: str) -> int:
    manifest = await load_manifest(target_dir, mod_type, instance)
    print(f"Manifest:          {manifest_path(target_dir, mod_type)}")
    print(f"Version:           {manifest.version}")
    owner = manifest.instance or "<unknown>"
    suffix = "" if manifest.instance == instance else " (other instance)"
    print(f"Instance:          {owner}{suffix}")
    print(f"Deployment method: {manifest.deployment_method or '<unknown>'}")
    print(f"Files:             {len(manifest.files)}")
    for f in manifest.files:
        print(f"    {f.rel_path}  <- {f.source}")
    return 0


async def cmd_check(target_dir: Path, mod_type: str, instance: str) -> int:
    manifest = await load_manifest(target_dir, mod_type, instance)
    statuses = await asyncio.to_thread(inspect_files, target_dir, manifest.files)
    markers = {FileStatus.UNCHANGED: "=", FileStatus.MODIFIED: "~", FileStatus.MISSING: "-"}
    for deployed, status in statuses:
        print(f"  {markers[status]} {deployed.rel_path} ({status})")
    counts = {s: sum(1 for _, st in statuses if st is s) for s in FileStatus}
    print(
        f"Unchanged: {counts[FileStatus.UNCHANGED]}  "
        f"Modified: {counts[FileStatus.MODIFIED]}  "
        f"Missing: {counts[FileStatus.MISSING]}"
    )
    return 0


async def cmd_purge(
    target_dir: Path, mod_type: str, instance: str, settings: Settings, assume_yes: bool
) -> int:
    registry = default_registry()
    files = await load_activation(
        mod_type,
        target_dir,
        instance,
        registry,
        console_confirm(assume_yes),
        concurrency=settings.purge_concurrency,
    )
    if files:
        print(f"{len(files)} file(s) were deployed by this instance; nothing to purge.")
    else:
        print("No foreign deployment remains.")
    return 0


async def cmd_clear(target_dir: Path, mod_type: str, instance: str) -> int:
    await save_activation(mod_type, instance, target_dir, [])
    print(f"Removed {manifest_path(target_dir, mod_type)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="deploy-manifest",
        description="Inspect and purge mod deployment manifests",
    )
    parser.add_argument("--dir", "-d", default=".", help="Deployment target directory")
    parser.add_argument("--mod-type", "-t", default="", help="Mod type (default: untyped)")
    parser.add_argument("--instance", help="Instance id (default: configured or persisted id)")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("show", help="Show the manifest")
    subparsers.add_parser("check", help="Compare recorded files with the target directory")
    purge_parser = subparsers.add_parser("purge", help="Purge files deployed by another instance")
    purge_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )
    subparsers.add_parser("clear", help="Delete the manifest without touching deployed files")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    settings = Settings()
    _configure_logging(settings.debug)
    target_dir = Path(args.dir).resolve()
    instance = args.instance or resolve_instance_id(settings)

    try:
        if args.command == "show":
            return asyncio.run(cmd_show(target_dir, args.mod_type, instance))
        if args.command == "check":
            return asyncio.run(cmd_check(target_dir, args.mod_type, instance))
        if args.command == "purge":
            return asyncio.run(cmd_purge(target_dir, args.mod_type, instance, settings, args.yes))
        return asyncio.run(cmd_clear(target_dir, args.mod_type, instance))
    except UserCanceledError:
        print("Canceled.")
        return 1
    except ManifestError as exc:
        print(f"Error: {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
