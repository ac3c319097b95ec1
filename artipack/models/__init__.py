"""artipack data models: all Pydantic v2, all frozen (immutable)."""

from artipack.models.artifacts import (
    ArtifactDefinition,
    ArtifactKind,
    ParameterSpec,
    ToolReference,
)
from artipack.models.build import BuildError, BuildRequest, BuildResult, BuildStatus
from artipack.models.cache import CacheEntry, CacheRecord, VerificationStatus
from artipack.models.fetch import FetchFailure, FetchMode, FetchReport
from artipack.models.package import (
    MANIFEST_FORMAT_VERSION,
    ManifestArtifact,
    ManifestTool,
    Package,
    PackageManifest,
)
from artipack.models.resolution import ResolvedToolSet

__all__ = [
    # artifacts
    "ArtifactDefinition",
    "ArtifactKind",
    "ParameterSpec",
    "ToolReference",
    # resolution
    "ResolvedToolSet",
    # cache
    "CacheEntry",
    "CacheRecord",
    "VerificationStatus",
    # fetch
    "FetchFailure",
    "FetchMode",
    "FetchReport",
    # package
    "MANIFEST_FORMAT_VERSION",
    "ManifestArtifact",
    "ManifestTool",
    "Package",
    "PackageManifest",
    # build
    "BuildError",
    "BuildRequest",
    "BuildResult",
    "BuildStatus",
]
