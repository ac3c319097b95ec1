"""Deterministic package assembly.

Package layout::

    {output}/
        manifest.json
        artifacts/{artifact name}.yaml
        tools/{tool name}

The package is staged in a temporary sibling directory and moved into place
only once complete, so a failed build never leaves a half-written package.
With ``archive=True`` a ``{output}.zip`` is written next to the directory;
its entries are sorted and carry fixed timestamps and permissions, so equal
inputs give byte-identical archives.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import zipfile
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path, PurePosixPath

import yaml

from artipack.core.errors import HashMismatchError, PackageIntegrityError
from artipack.core.hasher import sha256_file
from artipack.core.manifest import (
    ManifestGenerator,
    artifact_relative_path,
    tool_relative_path,
)
from artipack.models.artifacts import ArtifactDefinition
from artipack.models.cache import CacheEntry
from artipack.models.package import MANIFEST_FILENAME, TOOLS_DIRNAME, Package
from artipack.models.resolution import ResolvedToolSet

logger = logging.getLogger(__name__)

_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644
_TOOL_MODE = 0o755


def render_artifact(definition: ArtifactDefinition) -> bytes:
    """Serialize a definition as stable YAML."""
    text = yaml.safe_dump(
        definition.to_document(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=False,
    )
    return text.encode("utf-8")


class PackageBuilder:
    """Assembles artifacts and verified tools into a package directory.

    Parameters
    ----------
    manifests:
        Manifest generator; a default one is created when omitted.
    """

    def __init__(self, manifests: ManifestGenerator | None = None) -> None:
        self._manifests = manifests or ManifestGenerator()

    def build(
        self,
        definitions: Iterable[ArtifactDefinition],
        resolved: ResolvedToolSet,
        entries: Mapping[str, CacheEntry],
        output: Path,
        *,
        archive: bool = False,
        overwrite: bool = False,
        omitted_artifacts: Iterable[str] = (),
        failed_tools: Iterable[str] = (),
        created: datetime | None = None,
    ) -> Package:
        """Write the package and its manifest to *output*.

        Raises PackageIntegrityError if *entries* does not cover exactly the
        tools *resolved* requires, HashMismatchError if a cached blob no
        longer matches, and FileExistsError if *output* holds a previous
        package and *overwrite* is false.
        """
        ordered = sorted(definitions, key=lambda d: d.name)
        tools = self._check_inputs(ordered, resolved, entries)

        output = Path(output)
        check_output_path(output, overwrite)
        output.parent.mkdir(parents=True, exist_ok=True)

        staging = Path(tempfile.mkdtemp(dir=output.parent, prefix=f".{output.name}."))
        try:
            artifact_bytes = self._write_artifacts(staging, ordered)
            self._write_tools(staging, tools)

            manifest = self._manifests.generate(
                ordered,
                tools,
                artifact_bytes=artifact_bytes,
                omitted_artifacts=omitted_artifacts,
                failed_tools=failed_tools,
                created=created,
            )
            self._manifests.write(manifest, staging / MANIFEST_FILENAME)

            if output.exists():
                shutil.rmtree(output)
            os.replace(staging, output)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        archive_path = write_archive(output) if archive else None

        logger.info(
            "Built package %s: %d artifact(s), %d tool(s), fingerprint %s",
            output, len(ordered), len(tools), manifest.fingerprint[:12],
        )
        return Package(
            root=output,
            artifacts=ordered,
            tools=tools,
            manifest=manifest,
            manifest_path=output / MANIFEST_FILENAME,
            archive_path=archive_path,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _check_inputs(
        definitions: list[ArtifactDefinition],
        resolved: ResolvedToolSet,
        entries: Mapping[str, CacheEntry],
    ) -> dict[str, CacheEntry]:
        required = {tool.name for d in definitions for tool in d.tools}
        extra = set(resolved.tools) - required
        if extra:
            name = sorted(extra)[0]
            raise PackageIntegrityError(
                name, "resolved but not required by any packaged artifact"
            )

        tools: dict[str, CacheEntry] = {}
        for name in sorted(required):
            if name not in resolved.tools:
                raise PackageIntegrityError(name, "required but missing from the resolved set")
            entry = entries.get(name)
            if entry is None:
                raise PackageIntegrityError(name, "missing from the fetched cache entries")
            expected = resolved.tools[name].expected_hash
            if entry.hash != expected:
                raise PackageIntegrityError(
                    name, f"cache entry holds {entry.hash}, expected {expected}"
                )
            tools[name] = entry
        return tools

    @staticmethod
    def _write_artifacts(root: Path, definitions: list[ArtifactDefinition]) -> int:
        total = 0
        for definition in definitions:
            path = root / PurePosixPath(artifact_relative_path(definition.name))
            path.parent.mkdir(parents=True, exist_ok=True)
            data = render_artifact(definition)
            path.write_bytes(data)
            os.chmod(path, _FILE_MODE)
            total += len(data)
        return total

    @staticmethod
    def _write_tools(root: Path, tools: Mapping[str, CacheEntry]) -> None:
        for name, entry in tools.items():
            target = root / PurePosixPath(tool_relative_path(name))
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(entry.path, target)
            actual = sha256_file(target)
            if actual != entry.hash:
                raise HashMismatchError(name, entry.hash, actual, entry.url)
            os.chmod(target, _TOOL_MODE)
            logger.debug("Packaged tool %s (%d bytes)", name, entry.size)


def check_output_path(output: Path, overwrite: bool) -> None:
    if not output.exists():
        return
    if not output.is_dir():
        raise FileExistsError(f"output path is not a directory: {output}")
    if any(output.iterdir()) and not overwrite:
        raise FileExistsError(f"output directory is not empty: {output}")


def write_archive(root: Path) -> Path:
    """Zip *root* deterministically into ``{root}.zip``."""
    root = Path(root)
    archive_path = root.parent / f"{root.name}.zip"
    files = sorted(
        (p for p in root.rglob("*") if p.is_file()),
        key=lambda p: p.relative_to(root).as_posix(),
    )

    fd, tmp_name = tempfile.mkstemp(dir=root.parent, prefix=f".{archive_path.name}.")
    os.close(fd)
    try:
        with zipfile.ZipFile(tmp_name, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in files:
                arcname = f"{root.name}/{path.relative_to(root).as_posix()}"
                info = zipfile.ZipInfo(arcname, date_time=_ZIP_EPOCH)
                info.compress_type = zipfile.ZIP_DEFLATED
                mode = _TOOL_MODE if path.parent.name == TOOLS_DIRNAME else _FILE_MODE
                info.external_attr = (0o100000 | mode) << 16
                zf.writestr(info, path.read_bytes())
        os.replace(tmp_name, archive_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Wrote archive %s", archive_path)
    return archive_path
