"""Base protocol and descriptor for deployment methods."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class DeploymentMethod(Protocol):
    """What the manifest layer needs to know about a deployment method."""

    id: str
    name: str
    is_fallback_purge_safe: bool


@dataclass(frozen=True)
class MethodInfo:
    """Static description of a deployment method.

    ``is_fallback_purge_safe`` means files it deployed can be removed by
    another instance based on the manifest alone without destroying the
    mod sources (links can be deleted, moved originals cannot).
    """

    id: str
    name: str
    is_fallback_purge_safe: bool
