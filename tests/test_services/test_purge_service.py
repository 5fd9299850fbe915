"""Tests for fallback purge, file inspection and purge safety."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from deploy_manifest.exceptions import PurgeError, UserCanceledError
from deploy_manifest.methods.base import MethodInfo
from deploy_manifest.methods.registry import DeploymentMethodRegistry
from deploy_manifest.schemas.manifest import DeployedFile, DeploymentManifest
from deploy_manifest.services import purge_service
from deploy_manifest.services.purge_service import (
    FileStatus,
    PurgeDecision,
    PurgeKind,
    confirm_foreign_purge,
    fallback_purge,
    has_conflict,
    inspect_files,
    is_purge_safe,
    purge_prompt_text,
    resolve_deployed_path,
)
from tests.conftest import BASE_TIME_MS, CURRENT_INSTANCE, FOREIGN_INSTANCE, RecordingConfirm

if TYPE_CHECKING:
    from collections.abc import Callable


def _manifest(files: list[DeployedFile], method: str | None = None) -> DeploymentManifest:
    return DeploymentManifest(
        version=1, instance=FOREIGN_INSTANCE, deployment_method=method, files=files
    )


class TestResolveDeployedPath:
    def test_relative_path(self, tmp_path: Path) -> None:
        assert resolve_deployed_path(tmp_path, "Textures/a.dds") == tmp_path / "Textures" / "a.dds"

    def test_windows_separators(self, tmp_path: Path) -> None:
        assert resolve_deployed_path(tmp_path, "Textures\\a.dds") == tmp_path / "Textures" / "a.dds"

    @pytest.mark.parametrize(
        "rel_path", ["../outside.txt", "/etc/passwd", "a/../../b", "C:\\x", ""]
    )
    def test_escaping_paths_rejected(self, tmp_path: Path, rel_path: str) -> None:
        assert resolve_deployed_path(tmp_path, rel_path) is None


class TestFallbackPurge:
    @pytest.mark.asyncio
    async def test_removes_only_files_with_matching_mtime(
        self, target_dir: Path, deploy_file: Callable[..., DeployedFile]
    ) -> None:
        a = deploy_file("a.esp", BASE_TIME_MS)
        b_on_disk = deploy_file("b.esp", BASE_TIME_MS + 5000)
        b = b_on_disk.model_copy(update={"time": BASE_TIME_MS})

        report = await fallback_purge(target_dir, [a, b])

        assert not (target_dir / "a.esp").exists()
        assert (target_dir / "b.esp").exists()
        assert report.removed == ["a.esp"]
        assert report.kept == ["b.esp"]
        assert report.missing == []

    @pytest.mark.asyncio
    async def test_missing_files_are_ignored(self, target_dir: Path) -> None:
        ghost = DeployedFile(rel_path="ghost.esp", source="m", time=BASE_TIME_MS)
        report = await fallback_purge(target_dir, [ghost])
        assert report.missing == ["ghost.esp"]

    @pytest.mark.asyncio
    async def test_nested_files(
        self, target_dir: Path, deploy_file: Callable[..., DeployedFile]
    ) -> None:
        files = [deploy_file(f"Meshes/sub{i}/m{i}.nif") for i in range(20)]
        report = await fallback_purge(target_dir, files, concurrency=3)
        assert sorted(report.removed) == sorted(f.rel_path for f in files)
        assert not any((target_dir / f.rel_path).exists() for f in files)

    @pytest.mark.asyncio
    async def test_escaping_path_is_never_touched(
        self, tmp_path: Path, target_dir: Path
    ) -> None:
        outside = tmp_path / "game" / "precious.txt"
        outside.write_text("keep")
        mtime_ms = outside.stat().st_mtime_ns // 1_000_000
        record = DeployedFile(rel_path="../precious.txt", source="m", time=mtime_ms)

        report = await fallback_purge(target_dir, [record])

        assert outside.exists()
        assert report.kept == ["../precious.txt"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(
        self, target_dir: Path, deploy_file: Callable[..., DeployedFile]
    ) -> None:
        files = [deploy_file(f"f{i}.txt") for i in range(12)]
        active = 0
        peak = 0

        async def _slow_to_thread(func: Callable[..., FileStatus], *args: object) -> FileStatus:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                await asyncio.sleep(0.01)
                return func(*args)
            finally:
                active -= 1

        with patch.object(purge_service.asyncio, "to_thread", _slow_to_thread):
            report = await fallback_purge(target_dir, files, concurrency=2)

        assert peak == 2
        assert len(report.removed) == 12

    @pytest.mark.asyncio
    async def test_error_aborts_after_all_files_settle(
        self, target_dir: Path, deploy_file: Callable[..., DeployedFile]
    ) -> None:
        good = deploy_file("good.esp")
        bad = deploy_file("bad.esp")
        original_unlink = Path.unlink

        def _unlink(self: Path, missing_ok: bool = False) -> None:
            if self.name == "bad.esp":
                raise PermissionError("locked")
            original_unlink(self, missing_ok=missing_ok)

        with (
            patch.object(Path, "unlink", _unlink),
            pytest.raises(PurgeError, match="locked") as exc_info,
        ):
            await fallback_purge(target_dir, [bad, good])

        # no rollback: the other file was still processed
        assert not (target_dir / "good.esp").exists()
        assert (target_dir / "bad.esp").exists()
        assert [p.name for p, _ in exc_info.value.failures] == ["bad.esp"]

    @pytest.mark.asyncio
    async def test_stat_error_other_than_not_found_fails(
        self, target_dir: Path, deploy_file: Callable[..., DeployedFile]
    ) -> None:
        record = deploy_file("a.esp")
        with (
            patch.object(Path, "stat", side_effect=PermissionError("no access")),
            pytest.raises(PurgeError),
        ):
            await fallback_purge(target_dir, [record])


class TestInspectFiles:
    def test_classifies_files(
        self, target_dir: Path, deploy_file: Callable[..., DeployedFile]
    ) -> None:
        same = deploy_file("same.esp")
        changed = deploy_file("changed.esp", BASE_TIME_MS + 1).model_copy(
            update={"time": BASE_TIME_MS}
        )
        gone = DeployedFile(rel_path="gone.esp", source="m", time=BASE_TIME_MS)

        statuses = inspect_files(target_dir, [same, changed, gone])

        assert [status for _, status in statuses] == [
            FileStatus.UNCHANGED,
            FileStatus.MODIFIED,
            FileStatus.MISSING,
        ]
        assert (target_dir / "same.esp").exists()


class TestPurgeSafety:
    def test_known_safe_method(self, registry: DeploymentMethodRegistry) -> None:
        assert is_purge_safe(_manifest([], "hardlink_activator"), registry) is True

    def test_known_unsafe_method(self, registry: DeploymentMethodRegistry) -> None:
        assert is_purge_safe(_manifest([], "move_activator"), registry) is False

    def test_unknown_method(self, registry: DeploymentMethodRegistry) -> None:
        assert is_purge_safe(_manifest([], "mystery_activator"), registry) is False

    def test_missing_method(self, registry: DeploymentMethodRegistry) -> None:
        assert is_purge_safe(_manifest([]), registry) is False

    def test_custom_method(self) -> None:
        registry = DeploymentMethodRegistry(
            [MethodInfo(id="vfs", name="Virtual FS", is_fallback_purge_safe=True)]
        )
        assert is_purge_safe(_manifest([], "vfs"), registry) is True


class TestHasConflict:
    def test_same_instance(self) -> None:
        manifest = _manifest([DeployedFile(rel_path="a", source="m", time=1)])
        assert not has_conflict(manifest, FOREIGN_INSTANCE)

    def test_foreign_without_files(self) -> None:
        assert not has_conflict(_manifest([]), CURRENT_INSTANCE)

    def test_foreign_with_files(self) -> None:
        manifest = _manifest([DeployedFile(rel_path="a", source="m", time=1)])
        assert has_conflict(manifest, CURRENT_INSTANCE)


class TestConfirmForeignPurge:
    @pytest.mark.asyncio
    async def test_safe_prompt(
        self, registry: DeploymentMethodRegistry, confirm: RecordingConfirm
    ) -> None:
        files = [DeployedFile(rel_path="a", source="m", time=1)]
        kind = await confirm_foreign_purge(
            _manifest(files, "symlink_activator"), CURRENT_INSTANCE, registry, confirm
        )
        assert kind is PurgeKind.SAFE
        assert confirm.calls == [(PurgeKind.SAFE, files)]

    @pytest.mark.asyncio
    async def test_unsafe_prompt(
        self, registry: DeploymentMethodRegistry, confirm: RecordingConfirm
    ) -> None:
        files = [DeployedFile(rel_path="a", source="m", time=1)]
        await confirm_foreign_purge(_manifest(files), CURRENT_INSTANCE, registry, confirm)
        assert confirm.calls[0][0] is PurgeKind.UNSAFE

    @pytest.mark.asyncio
    async def test_decline_raises_user_canceled(
        self, registry: DeploymentMethodRegistry
    ) -> None:
        confirm = RecordingConfirm(decision=PurgeDecision.CANCEL)
        files = [DeployedFile(rel_path="a", source="m", time=1)]
        with pytest.raises(UserCanceledError) as exc_info:
            await confirm_foreign_purge(_manifest(files), CURRENT_INSTANCE, registry, confirm)
        assert exc_info.value.foreign_instance == FOREIGN_INSTANCE
        assert exc_info.value.current_instance == CURRENT_INSTANCE

    @pytest.mark.asyncio
    async def test_dialog_failure_raises_user_canceled(
        self, registry: DeploymentMethodRegistry
    ) -> None:
        confirm = RecordingConfirm(error=RuntimeError("dialog closed"))
        files = [DeployedFile(rel_path="a", source="m", time=1)]
        with pytest.raises(UserCanceledError):
            await confirm_foreign_purge(_manifest(files), CURRENT_INSTANCE, registry, confirm)


class TestPromptText:
    def test_unsafe_text_warns_about_destruction(self) -> None:
        text = purge_prompt_text(PurgeKind.UNSAFE)
        assert "destroy" in text
        assert "irreversibly" in text

    def test_safe_text_differs(self) -> None:
        assert purge_prompt_text(PurgeKind.SAFE) != purge_prompt_text(PurgeKind.UNSAFE)
