"""Fetch batch models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from artipack.models.cache import CacheEntry


class FetchMode(str, Enum):
    """Batch failure policy, chosen by the caller."""

    FAIL_FAST = "fail-fast"
    BEST_EFFORT = "best-effort"


class FetchFailure(BaseModel):
    """A tool that could not be made available."""

    model_config = ConfigDict(frozen=True)

    name: str
    error_type: str
    message: str
    url: str = ""
    expected_hash: str | None = None
    actual_hash: str | None = None


class FetchReport(BaseModel):
    """Outcome of one fetch batch, produced after every worker has joined."""

    model_config = ConfigDict(frozen=True)

    mode: FetchMode
    succeeded: dict[str, CacheEntry] = Field(default_factory=dict)
    failed: list[FetchFailure] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    reused: list[str] = Field(default_factory=list)
    downloaded: list[str] = Field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    @property
    def failed_names(self) -> list[str]:
        return sorted(failure.name for failure in self.failed)
