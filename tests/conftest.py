"""Shared test fixtures for deployment manifest tests."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pytest

from deploy_manifest.config import Settings
from deploy_manifest.methods.registry import default_registry
from deploy_manifest.schemas.manifest import DeployedFile
from deploy_manifest.services.purge_service import PurgeDecision, PurgeKind

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from deploy_manifest.methods.registry import DeploymentMethodRegistry

CURRENT_INSTANCE = "instance-current"
FOREIGN_INSTANCE = "instance-foreign"

# 2023-11-14T22:13:20Z, whole milliseconds so ns and ms timestamps agree
BASE_TIME_MS = 1_700_000_000_000


@dataclass
class RecordingConfirm:
    """Confirmation collaborator double that records every call."""

    decision: PurgeDecision = PurgeDecision.PURGE
    error: Exception | None = None
    calls: list[tuple[PurgeKind, list[DeployedFile]]] = field(default_factory=list)

    async def __call__(self, kind: PurgeKind, files: list[DeployedFile]) -> PurgeDecision:
        self.calls.append((kind, files))
        if self.error is not None:
            raise self.error
        return self.decision


def set_mtime_ms(path: Path, time_ms: int) -> None:
    ns = time_ms * 1_000_000
    os.utime(path, ns=(ns, ns))


@pytest.fixture
def target_dir(tmp_path: Path) -> Path:
    """Create an empty deployment target directory."""
    target = tmp_path / "game" / "Data"
    target.mkdir(parents=True)
    return target


@pytest.fixture
def deploy_file(target_dir: Path) -> Callable[..., DeployedFile]:
    """Create a file in the target with a fixed mtime and return its manifest record."""

    def _deploy(
        rel_path: str,
        time_ms: int = BASE_TIME_MS,
        source: str = "some-mod",
        content: str = "data",
    ) -> DeployedFile:
        path = target_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        set_mtime_ms(path, time_ms)
        return DeployedFile(rel_path=rel_path, source=source, time=time_ms)

    return _deploy


@pytest.fixture
def registry() -> DeploymentMethodRegistry:
    return default_registry()


@pytest.fixture
def confirm() -> RecordingConfirm:
    return RecordingConfirm()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create settings isolated from the environment and the user's home."""
    return Settings(
        _env_file=None,
        debug=True,
        state_dir=tmp_path / "state",
        purge_concurrency=4,
    )
