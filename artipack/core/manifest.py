"""Package manifest generation, serialization and verification.

The fingerprint identifies a package by its inputs alone: the sorted artifact
identifiers and the sorted (tool identifier, hash) pairs. The ``created``
timestamp is recorded but never hashed, so two builds of the same request
produce manifests that differ only in that field.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from artipack.core.hasher import canonical_json_bytes, sha256_file, sha256_hex
from artipack.models.artifacts import ArtifactDefinition
from artipack.models.cache import CacheEntry
from artipack.models.package import (
    ARTIFACTS_DIRNAME,
    MANIFEST_FILENAME,
    MANIFEST_FORMAT_VERSION,
    TOOLS_DIRNAME,
    ManifestArtifact,
    ManifestTool,
    PackageManifest,
)

logger = logging.getLogger(__name__)


def tool_relative_path(name: str) -> str:
    """Fixed package-relative location of a tool binary."""
    return str(PurePosixPath(TOOLS_DIRNAME) / name)


def artifact_relative_path(name: str) -> str:
    """Fixed package-relative location of an artifact document."""
    return str(PurePosixPath(ARTIFACTS_DIRNAME) / f"{name}.yaml")


def compute_fingerprint(
    artifact_names: Iterable[str],
    tools: Iterable[tuple[str, str]],
) -> str:
    """SHA-256 over sorted artifact identifiers and (tool, hash) pairs."""
    payload = {
        "artifacts": sorted(artifact_names),
        "tools": sorted([name, digest] for name, digest in tools),
    }
    return sha256_hex(canonical_json_bytes(payload))


class ManifestGenerator:
    """Builds, writes, loads and checks package manifests."""

    def generate(
        self,
        definitions: Iterable[ArtifactDefinition],
        entries: Mapping[str, CacheEntry],
        *,
        artifact_bytes: int = 0,
        omitted_artifacts: Iterable[str] = (),
        failed_tools: Iterable[str] = (),
        created: datetime | None = None,
    ) -> PackageManifest:
        """Describe a package made of *definitions* and the tools in *entries*.

        Pure: no disk or network access.
        """
        ordered = sorted(definitions, key=lambda d: d.name)
        artifacts = [
            ManifestArtifact(name=d.name, parameters=d.parameter_values())
            for d in ordered
        ]
        tools = [
            ManifestTool(
                name=name,
                hash=entries[name].hash,
                size=entries[name].size,
                path=tool_relative_path(name),
                url=entries[name].url,
            )
            for name in sorted(entries)
        ]
        omitted = sorted(omitted_artifacts)
        failed = sorted(failed_tools)

        return PackageManifest(
            fingerprint=compute_fingerprint(
                (a.name for a in artifacts),
                ((t.name, t.hash) for t in tools),
            ),
            created=created or datetime.now(timezone.utc),
            artifacts=artifacts,
            tools=tools,
            total_size=artifact_bytes + sum(t.size for t in tools),
            format_version=MANIFEST_FORMAT_VERSION,
            partial=bool(omitted or failed),
            omitted_artifacts=omitted,
            failed_tools=failed,
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def serialize(manifest: PackageManifest) -> bytes:
        """Canonical, human-readable JSON: sorted keys, two-space indent."""
        payload = manifest.model_dump(mode="json")
        text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=True)
        return (text + "\n").encode("utf-8")

    def write(self, manifest: PackageManifest, path: Path) -> Path:
        path = Path(path)
        path.write_bytes(self.serialize(manifest))
        logger.debug("Wrote manifest %s (%s)", path, manifest.fingerprint[:12])
        return path

    @staticmethod
    def load(path: Path) -> PackageManifest:
        return PackageManifest.model_validate_json(Path(path).read_text(encoding="utf-8"))

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_package(self, root: Path) -> list[str]:
        """Re-check a built package against its own manifest.

        Recomputes the fingerprint from the manifest's lists and re-hashes
        every tool file. Returns a list of problems; empty means intact.
        """
        root = Path(root)
        manifest_path = root / MANIFEST_FILENAME
        if not manifest_path.is_file():
            return [f"missing {MANIFEST_FILENAME}"]

        try:
            manifest = self.load(manifest_path)
        except ValueError as exc:
            return [f"unreadable manifest: {exc}"]

        problems: list[str] = []
        expected = compute_fingerprint(
            manifest.artifact_names,
            ((t.name, t.hash) for t in manifest.tools),
        )
        if expected != manifest.fingerprint:
            problems.append(
                f"fingerprint mismatch: manifest {manifest.fingerprint}, "
                f"recomputed {expected}"
            )

        for name in manifest.artifact_names:
            if not (root / artifact_relative_path(name)).is_file():
                problems.append(f"artifact {name!r}: missing {artifact_relative_path(name)}")

        for tool in manifest.tools:
            tool_path = root / PurePosixPath(tool.path)
            if not tool_path.is_file():
                problems.append(f"tool {tool.name!r}: missing {tool.path}")
                continue
            actual = sha256_file(tool_path)
            if actual != tool.hash:
                problems.append(
                    f"tool {tool.name!r}: expected sha256 {tool.hash}, got {actual}"
                )

        if problems:
            logger.warning("Package %s failed verification (%d problem(s))", root, len(problems))
        return problems
