"""Persistent identity of this application instance."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from deploy_manifest.filesystem.manifest_store import write_atomic

if TYPE_CHECKING:
    from pathlib import Path

    from deploy_manifest.config import Settings

logger = logging.getLogger(__name__)


def load_or_create_instance_id(path: Path) -> str:
    """Load the instance id from file, or create and save a new one."""
    if path.exists():
        instance_id = path.read_text(encoding="utf-8").strip()
        if instance_id:
            return instance_id
        logger.warning("Instance id file %s is empty, generating a new id", path)
    instance_id = uuid.uuid4().hex
    path.parent.mkdir(parents=True, exist_ok=True)
    write_atomic(path, instance_id + "\n")
    logger.info("Created instance id %s in %s", instance_id, path)
    return instance_id


def resolve_instance_id(settings: Settings) -> str:
    """Return the configured instance id, falling back to the persisted one."""
    if settings.instance_id:
        return settings.instance_id
    return load_or_create_instance_id(settings.instance_id_file)
