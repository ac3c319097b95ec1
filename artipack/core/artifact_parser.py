"""Artifact definition parsing and loading.

A definition is a YAML mapping::

    name: Windows.Triage.Autoruns
    description: Collect autoruns output.
    type: CLIENT
    parameters:
      - name: AutorunsArgs
        default: "-a *"
    sources:
      - query: SELECT * FROM Artifact.Windows.Sysinternals.Autoruns()
    tools:
      - name: Autoruns_amd64
        url: https://live.sysinternals.com/tools/autorunsc64.exe
        expected_hash: 0f3c...

Parsing is strict: a tool that carries a URL but no expected hash cannot be
verified and is rejected outright rather than reported as a warning.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

from artipack.core.errors import ParseError
from artipack.core.hasher import normalize_digest
from artipack.models.artifacts import (
    ArtifactDefinition,
    ArtifactKind,
    ParameterSpec,
    ToolReference,
)

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = (".yaml", ".yml")

_ARTIFACT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_TOOL_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def parse_artifact(text: str, source: str | None = None) -> ArtifactDefinition:
    """Parse one artifact document into an ArtifactDefinition.

    Raises ParseError naming the offending field.
    """
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParseError("document", f"invalid YAML: {exc}", source=source) from exc

    if not isinstance(document, dict):
        raise ParseError("document", "expected a mapping at the top level", source=source)

    name = _parse_name(document, source)
    kind = _parse_kind(document, source, name)

    description = document.get("description") or ""
    if not isinstance(description, str):
        raise ParseError(
            "description", "must be a string", source=source, artifact=name
        )

    parameters = _parse_parameters(document.get("parameters"), source, name)
    sources = _parse_sources(document.get("sources"), source, name)
    tools = _parse_tools(document.get("tools"), source, name)

    return ArtifactDefinition(
        name=name,
        kind=kind,
        description=description,
        parameters=parameters,
        sources=sources,
        tools=tools,
        source_path=source,
    )


def load_artifact_file(path: Path) -> ArtifactDefinition:
    """Read and parse a single definition file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ParseError("document", f"cannot read file: {exc}", source=str(path)) from exc
    return parse_artifact(text, source=str(path))


def iter_definition_files(paths: Iterable[Path]) -> list[Path]:
    """Expand files and directories into a sorted list of definition files."""
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(
                sorted(
                    p for p in path.rglob("*")
                    if p.is_file() and p.suffix.lower() in DEFINITION_SUFFIXES
                )
            )
        elif path.is_file():
            files.append(path)
        else:
            raise ParseError("document", "no such file or directory", source=str(path))
    return files


def load_definitions(paths: Iterable[Path]) -> list[ArtifactDefinition]:
    """Load every definition under *paths*, sorted by artifact name.

    The same artifact name appearing in two documents is a ParseError.
    """
    seen: dict[str, ArtifactDefinition] = {}
    for path in iter_definition_files(paths):
        definition = load_artifact_file(path)
        previous = seen.get(definition.name)
        if previous is not None:
            raise ParseError(
                "name",
                f"duplicate artifact also defined in {previous.source_path}",
                source=str(path),
                artifact=definition.name,
            )
        seen[definition.name] = definition

    logger.debug("Loaded %d artifact definition(s)", len(seen))
    return [seen[name] for name in sorted(seen)]


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _parse_name(document: dict[str, Any], source: str | None) -> str:
    name = document.get("name")
    if name is None or (isinstance(name, str) and not name.strip()):
        raise ParseError("name", "required field is missing", source=source)
    if not isinstance(name, str):
        raise ParseError("name", "must be a string", source=source)
    name = name.strip()
    if not _ARTIFACT_NAME.match(name):
        raise ParseError(
            "name",
            "may only contain letters, digits, '.', '_' and '-'",
            source=source,
            artifact=name,
        )
    return name


def _parse_kind(
    document: dict[str, Any], source: str | None, name: str
) -> ArtifactKind:
    raw = document.get("type")
    if raw is None or raw == "":
        raise ParseError("type", "required field is missing", source=source, artifact=name)
    try:
        return ArtifactKind(str(raw).strip().upper())
    except ValueError:
        allowed = ", ".join(kind.value for kind in ArtifactKind)
        raise ParseError(
            "type",
            f"{raw!r} is not one of {allowed}",
            source=source,
            artifact=name,
        ) from None


def _parse_parameters(
    raw: Any, source: str | None, name: str
) -> list[ParameterSpec]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ParseError("parameters", "must be a list", source=source, artifact=name)

    parameters: list[ParameterSpec] = []
    seen: set[str] = set()
    for i, item in enumerate(raw):
        field = f"parameters[{i}]"
        if not isinstance(item, dict):
            raise ParseError(field, "must be a mapping", source=source, artifact=name)
        param_name = item.get("name")
        if not isinstance(param_name, str) or not param_name.strip():
            raise ParseError(
                f"{field}.name", "required field is missing", source=source, artifact=name
            )
        param_name = param_name.strip()
        if param_name in seen:
            raise ParseError(
                f"{field}.name",
                f"duplicate parameter {param_name!r}",
                source=source,
                artifact=name,
            )
        seen.add(param_name)
        parameters.append(
            ParameterSpec(
                name=param_name,
                type=str(item.get("type") or "string"),
                default=item.get("default"),
                description=str(item.get("description") or ""),
            )
        )
    return parameters


def _parse_sources(
    raw: Any, source: str | None, name: str
) -> list[dict[str, Any]]:
    if raw is None or raw == []:
        raise ParseError(
            "sources", "at least one source block is required", source=source, artifact=name
        )
    if not isinstance(raw, list):
        raise ParseError("sources", "must be a list", source=source, artifact=name)
    for i, block in enumerate(raw):
        if not isinstance(block, dict):
            raise ParseError(
                f"sources[{i}]", "must be a mapping", source=source, artifact=name
            )
    return [dict(block) for block in raw]


def _parse_tools(raw: Any, source: str | None, name: str) -> list[ToolReference]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ParseError("tools", "must be a list", source=source, artifact=name)

    tools: dict[str, ToolReference] = {}
    for i, item in enumerate(raw):
        tool = _parse_tool(item, f"tools[{i}]", source, name)
        existing = tools.get(tool.name)
        if existing is not None:
            if not existing.same_source(tool):
                raise ParseError(
                    f"tools[{i}]",
                    f"tool {tool.name!r} listed twice with different url or hash",
                    source=source,
                    artifact=name,
                )
            continue
        tools[tool.name] = tool
    return list(tools.values())


def _parse_tool(
    item: Any, field: str, source: str | None, name: str
) -> ToolReference:
    if not isinstance(item, dict):
        raise ParseError(field, "must be a mapping", source=source, artifact=name)

    tool_name = item.get("name")
    if not isinstance(tool_name, str) or not tool_name.strip():
        raise ParseError(
            f"{field}.name", "required field is missing", source=source, artifact=name
        )
    tool_name = tool_name.strip()
    if not _TOOL_NAME.match(tool_name):
        raise ParseError(
            f"{field}.name",
            f"{tool_name!r} may only contain letters, digits, '.', '_' and '-'",
            source=source,
            artifact=name,
        )

    url = item.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ParseError(
            f"{field}.url",
            f"tool {tool_name!r} has no url",
            source=source,
            artifact=name,
        )

    raw_hash = item.get("expected_hash")
    if raw_hash is None or (isinstance(raw_hash, str) and not raw_hash.strip()):
        raise ParseError(
            f"{field}.expected_hash",
            f"tool {tool_name!r} has a url but no expected_hash; "
            "unverifiable tools are not allowed",
            source=source,
            artifact=name,
        )
    try:
        expected_hash = normalize_digest(str(raw_hash))
    except ValueError as exc:
        raise ParseError(
            f"{field}.expected_hash", str(exc), source=source, artifact=name
        ) from exc

    size = item.get("size")
    if size is not None and (
        isinstance(size, bool) or not isinstance(size, int) or size < 0
    ):
        raise ParseError(
            f"{field}.size",
            "must be a non-negative integer",
            source=source,
            artifact=name,
        )

    return ToolReference(
        name=tool_name,
        url=url.strip(),
        expected_hash=expected_hash,
        size=size,
    )
