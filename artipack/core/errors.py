"""Closed error taxonomy for the packaging engine.

Every failure the engine can report is one of the classes below. Each carries
an ``identifier`` naming the artifact or tool it concerns so the command
surface never has to report a bare, generic error.

- ParseError            malformed artifact document (fatal, before resolution)
- ConflictError         divergent declarations of one tool (fatal, index build)
- UnknownArtifactError  requested artifact not defined (fatal, resolution)
- DownloadError         network failure after bounded retries
- HashMismatchError     content failed verification (never retried)
- PackageIntegrityError internal invariant violation during assembly
"""

from __future__ import annotations

from collections.abc import Iterable


class ArtipackError(RuntimeError):
    """Base class for all engine errors."""

    identifier: str = ""

    def to_dict(self) -> dict[str, str]:
        """Structured form used by the command surface."""
        return {
            "identifier": self.identifier,
            "error_type": type(self).__name__,
            "message": str(self),
        }


class ParseError(ArtipackError):
    """Raised when an artifact definition is malformed.

    ``field`` names the offending field (``tools[1].expected_hash`` style for
    nested fields); ``source`` is the file the text came from, if known.
    """

    def __init__(
        self,
        field: str,
        message: str,
        *,
        source: str | None = None,
        artifact: str | None = None,
    ) -> None:
        self.field = field
        self.source = source
        self.artifact = artifact
        self.identifier = artifact or source or field
        where = f" in {source}" if source else ""
        who = f" (artifact {artifact!r})" if artifact else ""
        super().__init__(f"{field}: {message}{who}{where}")


class ConflictError(ArtipackError):
    """Raised when two artifacts declare one tool with divergent URL or hash."""

    def __init__(
        self,
        tool: str,
        first_artifact: str,
        second_artifact: str,
        detail: str,
    ) -> None:
        self.tool = tool
        self.first_artifact = first_artifact
        self.second_artifact = second_artifact
        self.identifier = tool
        super().__init__(
            f"tool {tool!r} declared differently by artifacts "
            f"{first_artifact!r} and {second_artifact!r}: {detail}"
        )


class UnknownArtifactError(ArtipackError):
    """Raised when a requested artifact identifier is not defined."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names = list(names)
        self.identifier = ", ".join(self.names)
        super().__init__(f"unknown artifact(s): {self.identifier}")


class DownloadError(ArtipackError):
    """Raised when a tool could not be downloaded."""

    def __init__(
        self,
        tool: str,
        url: str,
        message: str,
        *,
        attempts: int = 1,
    ) -> None:
        self.tool = tool
        self.url = url
        self.attempts = attempts
        self.identifier = tool
        super().__init__(
            f"tool {tool!r}: download from {url} failed after "
            f"{attempts} attempt(s): {message}"
        )


class HashMismatchError(ArtipackError):
    """Raised when content does not hash to its expected digest.

    Carries everything needed to investigate a stale or compromised source.
    """

    def __init__(
        self,
        tool: str,
        expected: str,
        actual: str,
        url: str = "",
    ) -> None:
        self.tool = tool
        self.expected = expected
        self.actual = actual
        self.url = url
        self.identifier = tool
        source = f" from {url}" if url else ""
        super().__init__(
            f"tool {tool!r}{source}: expected sha256 {expected}, got {actual}"
        )


class PackageIntegrityError(ArtipackError):
    """Raised when package assembly finds its inputs inconsistent."""

    def __init__(self, tool: str, message: str) -> None:
        self.tool = tool
        self.identifier = tool
        super().__init__(f"tool {tool!r}: {message}")
