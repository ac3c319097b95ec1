"""Resolution output: the tool set a build request needs."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from artipack.models.artifacts import ToolReference


class ResolvedToolSet(BaseModel):
    """Deduplicated tools for a set of requested artifacts.

    ``tools`` is keyed by tool identifier and ordered by identifier, so two
    resolutions of the same request compare equal.
    """

    model_config = ConfigDict(frozen=True)

    requested: list[str]
    tools: dict[str, ToolReference] = Field(default_factory=dict)
    required_by: dict[str, list[str]] = Field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.tools)

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    @property
    def names(self) -> list[str]:
        return list(self.tools)

    def references(self) -> list[ToolReference]:
        return list(self.tools.values())
