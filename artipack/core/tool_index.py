"""Tool registry built from parsed artifact definitions.

The index holds at most one ToolReference per tool identifier. Two artifacts
may declare the same tool only if they agree on where it comes from and what
it hashes to; any divergence fails the build while the index is constructed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from artipack.core.errors import ConflictError
from artipack.models.artifacts import ArtifactDefinition, ToolReference

logger = logging.getLogger(__name__)


class ToolIndex:
    """Registry mapping tool identifiers to their source metadata."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolReference] = {}
        # tool identifier -> artifacts declaring it, in insertion order
        self._declared_by: dict[str, list[str]] = {}

    @classmethod
    def build(cls, definitions: Iterable[ArtifactDefinition]) -> ToolIndex:
        """Index every tool declared by *definitions*.

        Raises ConflictError on the first divergent declaration.
        """
        index = cls()
        for definition in definitions:
            for tool in definition.tools:
                index.add(tool, definition.name)
        logger.debug("Built tool index with %d tool(s)", len(index))
        return index

    def add(self, tool: ToolReference, artifact: str) -> None:
        """Insert *tool* as declared by *artifact*.

        Re-inserting an identical declaration only records the artifact.
        """
        existing = self._tools.get(tool.name)
        if existing is None:
            self._tools[tool.name] = tool
            self._declared_by[tool.name] = [artifact]
            return

        first = self._declared_by[tool.name][0]
        if existing.url != tool.url:
            raise ConflictError(
                tool.name, first, artifact,
                f"url {existing.url!r} != {tool.url!r}",
            )
        if existing.expected_hash != tool.expected_hash:
            raise ConflictError(
                tool.name, first, artifact,
                f"expected_hash {existing.expected_hash} != {tool.expected_hash}",
            )
        if (
            existing.size is not None
            and tool.size is not None
            and existing.size != tool.size
        ):
            raise ConflictError(
                tool.name, first, artifact,
                f"size {existing.size} != {tool.size}",
            )
        if existing.size is None and tool.size is not None:
            self._tools[tool.name] = existing.model_copy(update={"size": tool.size})

        if artifact not in self._declared_by[tool.name]:
            self._declared_by[tool.name].append(artifact)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> ToolReference:
        """Return the indexed reference for *name* (KeyError if absent)."""
        return self._tools[name]

    def declared_by(self, name: str) -> list[str]:
        return list(self._declared_by.get(name, []))

    @property
    def names(self) -> list[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
