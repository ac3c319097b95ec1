"""Artifact definition models: parsed once, immutable afterwards."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from artipack.core.hasher import normalize_digest


class ArtifactKind(str, Enum):
    """Where an artifact runs."""

    CLIENT = "CLIENT"
    SERVER = "SERVER"
    EVENT = "EVENT"


class ParameterSpec(BaseModel):
    """A declared artifact parameter. The default is applied verbatim."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    default: Any = None
    description: str = ""


class ToolReference(BaseModel):
    """An external helper binary required by an artifact.

    ``expected_hash`` is always stored as a bare lower-case SHA-256 digest.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    expected_hash: str
    size: int | None = Field(default=None, ge=0)

    @field_validator("expected_hash")
    @classmethod
    def _normalize_hash(cls, value: str) -> str:
        return normalize_digest(value)

    def same_source(self, other: ToolReference) -> bool:
        """True if *other* points at the same bytes from the same URL."""
        return self.url == other.url and self.expected_hash == other.expected_hash


class ArtifactDefinition(BaseModel):
    """A declarative forensic collection task.

    ``source_path`` records where the definition was loaded from and is
    never serialized into a package.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ArtifactKind
    description: str = ""
    parameters: list[ParameterSpec] = Field(default_factory=list)
    sources: list[dict[str, Any]] = Field(min_length=1)
    tools: list[ToolReference] = Field(default_factory=list)
    source_path: str | None = Field(default=None, exclude=True)

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def parameter_values(self) -> dict[str, Any]:
        """Declared defaults, in declaration order, with nothing added."""
        return {param.name: param.default for param in self.parameters}

    def to_document(self) -> dict[str, Any]:
        """Render back into the definition document shape."""
        document: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "type": self.kind.value,
        }
        if self.parameters:
            document["parameters"] = [
                param.model_dump(exclude_defaults=False) for param in self.parameters
            ]
        document["sources"] = [dict(source) for source in self.sources]
        if self.tools:
            document["tools"] = [
                tool.model_dump(exclude_none=True) for tool in self.tools
            ]
        return document
