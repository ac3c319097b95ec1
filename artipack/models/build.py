"""Build request/result models: the command surface's contract."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from artipack.models.fetch import FetchMode, FetchReport
from artipack.models.package import PackageManifest


class BuildStatus(str, Enum):
    """Overall build outcome."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES: dict[BuildStatus, int] = {
    BuildStatus.SUCCESS: 0,
    BuildStatus.FAILED: 1,
    BuildStatus.PARTIAL: 3,
}


class BuildRequest(BaseModel):
    """A request to package a set of artifacts."""

    model_config = ConfigDict(frozen=True)

    artifacts: list[str] = Field(min_length=1)
    output: Path
    definitions: list[Path] = Field(min_length=1)
    mode: FetchMode = FetchMode.FAIL_FAST
    archive: bool = False
    overwrite: bool = False


class BuildError(BaseModel):
    """One per-identifier failure reported by a build."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    error_type: str
    message: str


class BuildResult(BaseModel):
    """What a build returns to its caller."""

    model_config = ConfigDict(frozen=True)

    status: BuildStatus
    manifest_path: Path | None = None
    archive_path: Path | None = None
    manifest: PackageManifest | None = None
    errors: list[BuildError] = Field(default_factory=list)
    fetch_report: FetchReport | None = None

    @property
    def exit_code(self) -> int:
        return self.status.exit_code
