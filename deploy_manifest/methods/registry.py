"""Deployment method registry used to judge whether a foreign purge is safe."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deploy_manifest.methods.base import MethodInfo

if TYPE_CHECKING:
    from collections.abc import Iterable

    from deploy_manifest.methods.base import DeploymentMethod

BUILTIN_METHODS: tuple[MethodInfo, ...] = (
    MethodInfo(id="hardlink_activator", name="Hardlink Deployment", is_fallback_purge_safe=True),
    MethodInfo(id="symlink_activator", name="Symlink Deployment", is_fallback_purge_safe=True),
    MethodInfo(
        id="symlink_activator_elevated",
        name="Symlink Deployment (Run as Administrator)",
        is_fallback_purge_safe=True,
    ),
    MethodInfo(id="copy_activator", name="Copy Deployment", is_fallback_purge_safe=False),
    MethodInfo(id="move_activator", name="Move Deployment", is_fallback_purge_safe=False),
)


class DeploymentMethodRegistry:
    """Lookup table of known deployment methods by id."""

    def __init__(self, methods: Iterable[DeploymentMethod] = ()) -> None:
        self._methods: dict[str, DeploymentMethod] = {}
        for method in methods:
            self.register(method)

    def register(self, method: DeploymentMethod) -> None:
        """Add or replace a method."""
        self._methods[method.id] = method

    def get(self, method_id: str | None) -> DeploymentMethod | None:
        """Return the method with ``method_id``, or None if unknown."""
        if method_id is None:
            return None
        return self._methods.get(method_id)

    def __call__(self, method_id: str) -> DeploymentMethod | None:
        return self.get(method_id)

    def ids(self) -> list[str]:
        """Return the ids of all registered methods."""
        return list(self._methods.keys())


def default_registry() -> DeploymentMethodRegistry:
    """Create a registry pre-populated with the built-in method descriptors."""
    return DeploymentMethodRegistry(BUILTIN_METHODS)
