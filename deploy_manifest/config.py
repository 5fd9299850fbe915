"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Deployment manifest settings."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_MANIFEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Identity of this running copy; empty means "use the persisted id in state_dir"
    instance_id: str = ""
    state_dir: Path = Path.home() / ".local" / "share" / "deploy-manifest"

    # Fallback purge
    purge_concurrency: int = Field(default=16, ge=1, le=256)

    @property
    def instance_id_file(self) -> Path:
        return self.state_dir / "instance_id"
