"""Package and manifest models."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from artipack.models.artifacts import ArtifactDefinition
from artipack.models.cache import CacheEntry

MANIFEST_FORMAT_VERSION = 1
MANIFEST_FILENAME = "manifest.json"
ARTIFACTS_DIRNAME = "artifacts"
TOOLS_DIRNAME = "tools"


class ManifestArtifact(BaseModel):
    """An artifact included in a package, with the parameters it carries."""

    model_config = ConfigDict(frozen=True)

    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ManifestTool(BaseModel):
    """A tool binary included in a package."""

    model_config = ConfigDict(frozen=True)

    name: str
    hash: str
    size: int
    path: str  # POSIX path relative to the package root
    url: str = ""


class PackageManifest(BaseModel):
    """The durable record of a built package.

    Everything except ``created`` is a pure function of the package inputs.
    """

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    created: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    artifacts: list[ManifestArtifact] = Field(default_factory=list)
    tools: list[ManifestTool] = Field(default_factory=list)
    total_size: int = 0
    format_version: int = MANIFEST_FORMAT_VERSION
    partial: bool = False
    omitted_artifacts: list[str] = Field(default_factory=list)
    failed_tools: list[str] = Field(default_factory=list)

    @property
    def artifact_names(self) -> list[str]:
        return [artifact.name for artifact in self.artifacts]

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]


class Package(BaseModel):
    """An assembled package on disk."""

    model_config = ConfigDict(frozen=True)

    root: Path
    artifacts: list[ArtifactDefinition]
    tools: dict[str, CacheEntry]
    manifest: PackageManifest
    manifest_path: Path
    archive_path: Path | None = None
