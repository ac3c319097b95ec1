"""Artifact-to-tool dependency resolution.

Artifacts depend on tools and never on other artifacts, so resolution is a
single-hop union over the requested artifacts' tool lists. The union is keyed
by tool identifier: a tool needed by five artifacts is fetched and packaged
once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from artipack.core.errors import UnknownArtifactError
from artipack.core.tool_index import ToolIndex
from artipack.models.artifacts import ArtifactDefinition, ToolReference
from artipack.models.resolution import ResolvedToolSet

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Computes the ResolvedToolSet for a set of requested artifacts.

    Parameters
    ----------
    definitions:
        Every parsed artifact definition available to the build.
    index:
        The ToolIndex built from the same definitions. Built on the fly
        when omitted.
    """

    def __init__(
        self,
        definitions: Iterable[ArtifactDefinition],
        index: ToolIndex | None = None,
    ) -> None:
        self._definitions: dict[str, ArtifactDefinition] = {
            d.name: d for d in definitions
        }
        self._index = index if index is not None else ToolIndex.build(
            self._definitions.values()
        )

    @property
    def index(self) -> ToolIndex:
        return self._index

    @property
    def artifact_names(self) -> list[str]:
        return sorted(self._definitions)

    def definitions_for(self, requested: Iterable[str]) -> list[ArtifactDefinition]:
        """Return the requested definitions, deduplicated and sorted by name.

        Raises UnknownArtifactError listing every missing identifier.
        """
        names = _dedupe(requested)
        missing = [name for name in names if name not in self._definitions]
        if missing:
            raise UnknownArtifactError(missing)
        return [self._definitions[name] for name in sorted(names)]

    def resolve(self, requested: Iterable[str]) -> ResolvedToolSet:
        """Union the tool requirements of the requested artifacts."""
        definitions = self.definitions_for(requested)

        tools: dict[str, ToolReference] = {}
        required_by: dict[str, list[str]] = {}
        for definition in definitions:
            for tool in definition.tools:
                tools.setdefault(tool.name, self._index.get(tool.name))
                required_by.setdefault(tool.name, []).append(definition.name)

        resolved = ResolvedToolSet(
            requested=[d.name for d in definitions],
            tools={name: tools[name] for name in sorted(tools)},
            required_by={name: sorted(required_by[name]) for name in sorted(required_by)},
        )
        logger.info(
            "Resolved %d artifact(s) to %d tool(s)",
            len(definitions),
            len(resolved),
        )
        return resolved


def _dedupe(names: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for name in names:
        seen.setdefault(name, None)
    return list(seen)
