"""Canonical hashing helpers for tool verification and package fingerprints.

Every digest in artipack is a lower-case SHA-256 hex string. Definitions may
spell an expected hash with a ``sha256:`` prefix or in upper case;
``normalize_digest`` folds both spellings into the canonical form.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any

_CHUNK_SIZE = 1024 * 1024
_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object.

    Returns "sha256:<hex>".
    """
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def normalize_digest(value: str) -> str:
    """Return *value* as a bare lower-case SHA-256 hex digest.

    Raises ValueError if the value is not a SHA-256 digest.
    """
    digest = str(value).strip().lower().removeprefix("sha256:")
    if not _HEX_DIGEST.match(digest):
        raise ValueError(f"not a SHA-256 hex digest: {value!r}")
    return digest


def is_sha256_digest(value: str) -> bool:
    """Check whether *value* normalizes to a SHA-256 digest."""
    try:
        normalize_digest(value)
    except ValueError:
        return False
    return True
