"""Content-addressed local cache of verified tool binaries.

Storage layout::

    {root}/
        cache.json                              tool identifier -> record
        blobs/{sha256[0:2]}/{sha256[2:4]}/{sha256}.bin
        partial/{sha256(identifier)}.part       in-progress downloads

Bytes are hashed before anything is written to ``blobs/``; content that does
not match its expected digest never reaches it. A record is never trusted on
its own: every lookup re-hashes the blob it points at.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from artipack.core.errors import HashMismatchError
from artipack.core.hasher import normalize_digest, sha256_file, sha256_hex
from artipack.models.cache import CacheEntry, CacheRecord, VerificationStatus

logger = logging.getLogger(__name__)

CACHE_RECORD_FILENAME = "cache.json"


class ToolCache:
    """SHA-256 keyed store of tool binaries, indexed by tool identifier.

    Safe to share between fetch workers: writes for one identifier are
    serialized by a per-identifier lock, and ``cache.json`` updates by a
    single record lock.

    Parameters
    ----------
    root:
        Cache directory. Created if it does not exist.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._blobs = self._root / "blobs"
        self._partial = self._root / "partial"
        self._record_path = self._root / CACHE_RECORD_FILENAME
        self._blobs.mkdir(parents=True, exist_ok=True)

        self._record_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._records: dict[str, CacheRecord] = self._load_records()

    @property
    def root(self) -> Path:
        return self._root

    def blob_path(self, digest: str) -> Path:
        """Storage path for a digest: {blobs}/{h[0:2]}/{h[2:4]}/{h}.bin"""
        return self._blobs / digest[:2] / digest[2:4] / f"{digest}.bin"

    def partial_path(self, name: str) -> Path:
        """Staging file for an unfinished download of tool *name*.

        Keyed by identifier so the per-identifier lock also guards it.
        """
        self._partial.mkdir(parents=True, exist_ok=True)
        return self._partial / f"{sha256_hex(name.encode('utf-8'))}.part"

    def lock_for(self, name: str) -> threading.RLock:
        """Return the write lock for tool identifier *name*."""
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.RLock()
            return lock

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, name: str, expected_hash: str | None = None) -> CacheEntry | None:
        """Return the cached entry for *name*, re-verified from disk.

        Returns None when there is no record or its blob is gone. The entry
        is VERIFIED only if the stored bytes hash to the recorded digest and,
        when *expected_hash* is given, that digest is the expected one.
        """
        with self._record_lock:
            record = self._records.get(name)
        if record is None:
            return None

        path = self.blob_path(record.hash)
        try:
            actual = sha256_file(path)
            size = path.stat().st_size
        except FileNotFoundError:
            logger.debug("Cache record for %s points at missing blob %s", name, path)
            return None

        status = VerificationStatus.VERIFIED
        if actual != record.hash:
            logger.error(
                "Cached blob for %s is corrupt: recorded %s, on disk %s",
                name, record.hash, actual,
            )
            status = VerificationStatus.FAILED
        elif expected_hash is not None and normalize_digest(expected_hash) != record.hash:
            logger.debug(
                "Cached %s holds %s, now expected %s",
                name, record.hash[:12], normalize_digest(expected_hash)[:12],
            )
            status = VerificationStatus.FAILED

        return CacheEntry(
            name=name,
            path=path,
            hash=record.hash,
            size=size,
            url=record.url,
            fetched_at=record.downloaded,
            status=status,
        )

    def entries(self) -> list[CacheEntry]:
        """Every cache record as a re-verified entry, sorted by identifier."""
        with self._record_lock:
            names = sorted(self._records)
        result = []
        for name in names:
            entry = self.lookup(name)
            if entry is not None:
                result.append(entry)
        return result

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(
        self,
        name: str,
        data: bytes,
        expected_hash: str,
        *,
        url: str = "",
    ) -> CacheEntry:
        """Verify *data* against *expected_hash* and persist it.

        Raises HashMismatchError, writing nothing, if the bytes do not match.
        """
        expected = normalize_digest(expected_hash)
        actual = sha256_hex(data)
        if actual != expected:
            logger.error(
                "Refusing to cache %s from %s: expected %s, got %s",
                name, url or "<unknown>", expected, actual,
            )
            raise HashMismatchError(name, expected, actual, url)

        def place(path: Path) -> None:
            _atomic_write(path, data)
            logger.debug("Wrote %d bytes for %s to %s", len(data), name, path)

        return self._commit(name, expected, len(data), url, place)

    def store_file(
        self,
        name: str,
        source: Path,
        expected_hash: str,
        *,
        url: str = "",
    ) -> CacheEntry:
        """Verify the file at *source* and copy it into the cache.

        *source* is removed afterwards. On a hash mismatch it is removed and
        HashMismatchError is raised.
        """
        source = Path(source)
        expected = normalize_digest(expected_hash)
        actual = sha256_file(source)
        if actual != expected:
            logger.error(
                "Refusing to cache %s from %s: expected %s, got %s",
                name, url or "<unknown>", expected, actual,
            )
            source.unlink(missing_ok=True)
            raise HashMismatchError(name, expected, actual, url)

        def place(path: Path) -> None:
            _atomic_copy(source, path)
            logger.debug("Copied %s for %s to %s", source.name, name, path)

        size = source.stat().st_size
        entry = self._commit(name, expected, size, url, place)
        source.unlink(missing_ok=True)
        return entry

    def _commit(
        self,
        name: str,
        digest: str,
        size: int,
        url: str,
        place: Callable[[Path], None],
    ) -> CacheEntry:
        """Put verified content at its blob path and record it for *name*."""
        with self.lock_for(name):
            path = self.blob_path(digest)
            if not (path.is_file() and sha256_file(path) == digest):
                place(path)

            record = CacheRecord(
                url=url,
                hash=digest,
                size=size,
                downloaded=datetime.now(timezone.utc),
                verified=True,
            )
            with self._record_lock:
                # invalidate() may have unlinked a shared blob since the check.
                if not path.is_file():
                    place(path)
                self._records[name] = record
                self._persist_records()

        return CacheEntry(
            name=name,
            path=path,
            hash=digest,
            size=size,
            url=url,
            fetched_at=record.downloaded,
            status=VerificationStatus.VERIFIED,
        )

    def read(self, entry: CacheEntry) -> bytes:
        """Read the bytes behind *entry*, re-verifying them first."""
        data = Path(entry.path).read_bytes()
        actual = sha256_hex(data)
        if actual != entry.hash:
            raise HashMismatchError(entry.name, entry.hash, actual, entry.url)
        return data

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, name: str) -> bool:
        """Drop the record for *name*.

        The blob is deleted once no other record references its digest.
        Returns True if a record was removed.
        """
        with self._record_lock:
            record = self._records.pop(name, None)
            if record is None:
                return False
            self._persist_records()
            # Unlinked under the record lock; _commit re-checks the blob under it.
            if not any(r.hash == record.hash for r in self._records.values()):
                self.blob_path(record.hash).unlink(missing_ok=True)
        logger.warning("Invalidated cache record for %s (%s)", name, record.hash[:12])
        return True

    # ------------------------------------------------------------------
    # Record persistence
    # ------------------------------------------------------------------

    def _load_records(self) -> dict[str, CacheRecord]:
        if not self._record_path.exists():
            return {}
        try:
            raw = json.loads(self._record_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Ignoring unreadable cache record %s: %s", self._record_path, exc
            )
            return {}

        records: dict[str, CacheRecord] = {}
        for name, value in raw.items():
            try:
                records[name] = CacheRecord.model_validate(value)
            except ValueError as exc:
                logger.warning("Ignoring malformed cache record for %s: %s", name, exc)
        logger.debug("Loaded %d cache record(s) from %s", len(records), self._record_path)
        return records

    def _persist_records(self) -> None:
        """Write cache.json. Caller holds the record lock."""
        payload = {
            name: self._records[name].model_dump(mode="json")
            for name in sorted(self._records)
        }
        text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
        _atomic_write(self._record_path, text.encode("utf-8"))


def _atomic_write(path: Path, data: bytes) -> None:
    """Write via a temporary sibling file and rename into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _atomic_copy(source: Path, path: Path) -> None:
    """Copy *source* via a temporary sibling of *path* and rename into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as dst, Path(source).open("rb") as src:
            shutil.copyfileobj(src, dst)
            dst.flush()
            os.fsync(dst.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
