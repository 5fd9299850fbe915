"""Manifest format registry: version -> upgrade step toward the current format."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from deploy_manifest.exceptions import UnsupportedUpgradeError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

CURRENT_VERSION = 1


def format_1(data: dict[str, Any]) -> dict[str, Any]:
    """Baseline format. Pre-versioning files are stamped as version 1."""
    return {**data, "version": 1}


FORMATS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: format_1,
}


def register_format(version: int, upgrade_fn: Callable[[dict[str, Any]], dict[str, Any]]) -> None:
    """Register the upgrade step for manifests stored at ``version``."""
    if version < 1:
        msg = f"Manifest format version must be positive, got {version}"
        raise ValueError(msg)
    FORMATS[version] = upgrade_fn


def declared_version(data: dict[str, Any]) -> int:
    """Return the version a parsed manifest claims, defaulting to 1."""
    raw = data.get("version")
    if not raw:
        return 1
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, bool) or not isinstance(raw, int):
        msg = f"Manifest version must be an integer, got {raw!r}"
        raise UnsupportedUpgradeError(msg)
    return raw


def upgrade(data: dict[str, Any], current_version: int = CURRENT_VERSION) -> dict[str, Any]:
    """Apply registered upgrade steps until ``data`` is at ``current_version``.

    Each step must strictly increase the version while below current. A step
    that stalls or goes backwards means a broken registry entry and is fatal,
    as is a version written by a newer release than this one.
    """
    version = declared_version(data)
    if version > current_version:
        msg = (
            f"Manifest format {version} is newer than the supported format {current_version}"
        )
        raise UnsupportedUpgradeError(msg)

    upgraded = data
    while True:
        step = FORMATS.get(version)
        if step is None:
            msg = f"unsupported format upgrade {version} -> {current_version}"
            raise UnsupportedUpgradeError(msg)
        upgraded = step(upgraded)
        next_version = declared_version(upgraded)
        if next_version >= current_version:
            if next_version > current_version:
                msg = (
                    f"Upgrade from {version} overshot to {next_version} "
                    f"(current {current_version})"
                )
                raise UnsupportedUpgradeError(msg)
            return upgraded
        if next_version <= version:
            msg = f"unsupported format upgrade {version} -> {current_version}"
            raise UnsupportedUpgradeError(msg)
        logger.debug("Upgraded deployment manifest format %d -> %d", version, next_version)
        version = next_version
