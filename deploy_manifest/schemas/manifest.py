"""Deployment manifest schemas.

Field names follow the on-disk JSON keys through aliases (``relPath``,
``deploymentMethod``) so files written by other tools stay readable.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt


class DeployedFile(BaseModel):
    """One file placed into the deployment target."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    rel_path: str = Field(alias="relPath")
    source: str
    # Modification time at deployment, in milliseconds since the epoch
    time: StrictInt | StrictFloat


class DeploymentManifest(BaseModel):
    """Persisted record of the files deployed to one (target, mod type)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int = Field(ge=1)
    instance: str = ""
    deployment_method: str | None = Field(default=None, alias="deploymentMethod")
    files: list[DeployedFile] = Field(default_factory=list)
