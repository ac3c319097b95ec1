"""Tool cache records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class VerificationStatus(str, Enum):
    """Outcome of re-hashing a cached blob."""

    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    FAILED = "failed"


class CacheEntry(BaseModel):
    """A tool binary held in the local cache.

    ``status`` reflects a re-hash of the stored bytes at the time the entry
    was produced, never the persisted record alone.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    hash: str
    size: int
    url: str = ""
    fetched_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    status: VerificationStatus = VerificationStatus.UNVERIFIED

    @property
    def is_verified(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    def matches(self, expected_hash: str) -> bool:
        """Verified and holding exactly *expected_hash*."""
        return self.is_verified and self.hash == expected_hash


class CacheRecord(BaseModel):
    """One value of ``cache.json``, keyed by tool identifier."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    hash: str
    size: int
    downloaded: datetime
    verified: bool = True
