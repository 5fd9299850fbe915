"""Exception types for deployment manifest handling.

Convention:
- ``ManifestError`` subclasses are fatal for the current operation. They carry
  the manifest (or deployed file) path so a user-facing message can point at
  the file to inspect or remove.
- ``UserCanceledError`` is not a defect. It signals that the caller's larger
  operation must stop without further side effects.
- A missing file is never an error: loading treats it as an empty manifest,
  saving and purging treat it as already removed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class ManifestError(Exception):
    """Base class for manifest errors, optionally annotated with a file path."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path is None:
            return self.message
        return (
            f"{self.message}\n"
            f"*** When you report this, please include the file \"{self.path}\" ***"
        )


class MalformedManifestError(ManifestError):
    """The manifest text is not structurally valid JSON."""


class UnsupportedUpgradeError(ManifestError):
    """The format upgrade chain stalled or hit an unknown version."""


class SerializationError(ManifestError):
    """The encoder produced text that does not parse back."""


class ManifestIOError(ManifestError):
    """Reading, writing, or deleting the manifest failed for a reason other than not-found."""


class PurgeError(ManifestError):
    """Fallback purge failed to stat or remove one or more deployed files."""

    def __init__(self, message: str, failures: list[tuple[Path, OSError]]) -> None:
        super().__init__(message, failures[0][0] if failures else None)
        self.failures = failures


class UserCanceledError(Exception):
    """The user declined (or could not be asked) to purge a foreign deployment."""

    def __init__(self, foreign_instance: str = "", current_instance: str = "") -> None:
        super().__init__(
            f"Purge of files deployed by instance {foreign_instance!r} "
            f"canceled (current instance {current_instance!r})"
        )
        self.foreign_instance = foreign_instance
        self.current_instance = current_instance
