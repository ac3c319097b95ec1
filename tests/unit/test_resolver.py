"""Tests for DependencyResolver: deduplicated, deterministic tool sets."""

from __future__ import annotations

import pytest

from artipack.core.errors import UnknownArtifactError
from artipack.core.resolver import DependencyResolver
from artipack.models.artifacts import ArtifactDefinition, ArtifactKind, ToolReference


@pytest.fixture
def resolver(make_tool) -> DependencyResolver:
    t1 = ToolReference(**make_tool("T1")[0])
    t2 = ToolReference(**make_tool("T2")[0])
    t3 = ToolReference(**make_tool("T3")[0])

    def _definition(name, *tools):
        return ArtifactDefinition(
            name=name,
            kind=ArtifactKind.CLIENT,
            sources=[{"query": "SELECT 1"}],
            tools=list(tools),
        )

    return DependencyResolver([
        _definition("A", t1),
        _definition("B", t1, t2),
        _definition("D", t3),
        _definition("NoTools"),
    ])


class TestDependencyResolver:
    def test_shared_tool_resolved_once(self, resolver):
        resolved = resolver.resolve(["A", "B"])
        assert resolved.names == ["T1", "T2"]
        assert len(resolved) == 2
        assert resolved.required_by["T1"] == ["A", "B"]
        assert resolved.required_by["T2"] == ["B"]

    def test_order_of_request_does_not_matter(self, resolver):
        forward = resolver.resolve(["A", "B", "D"])
        backward = resolver.resolve(["D", "B", "A"])
        assert forward == backward
        assert forward.requested == ["A", "B", "D"]

    def test_duplicate_request_collapsed(self, resolver):
        assert resolver.resolve(["A", "A"]).requested == ["A"]

    def test_artifact_without_tools(self, resolver):
        resolved = resolver.resolve(["NoTools"])
        assert len(resolved) == 0
        assert resolved.references() == []

    def test_unknown_artifact_lists_every_missing_name(self, resolver):
        with pytest.raises(UnknownArtifactError) as exc_info:
            resolver.resolve(["A", "C", "Z"])
        assert exc_info.value.names == ["C", "Z"]
        assert "C" in str(exc_info.value)

    def test_definitions_for_sorted(self, resolver):
        names = [d.name for d in resolver.definitions_for(["D", "A"])]
        assert names == ["A", "D"]

    def test_artifact_names(self, resolver):
        assert resolver.artifact_names == ["A", "B", "D", "NoTools"]
