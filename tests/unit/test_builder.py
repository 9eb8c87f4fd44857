"""
Graph builder tests
"""

import pytest

from conftest import make_task

from pantheon_flow.errors import GraphInvalidError
from pantheon_flow.task_graph.builder import GraphBuilder
from pantheon_flow.task_graph.dependency_analyzer import DependencyAnalysis, DependencyAnalyzer
from pantheon_flow.task_graph.types import DependencyKind, DependencySet


class TestGraphBuilder:
    """GraphBuilder tests"""

    @pytest.fixture
    def builder(self):
        return GraphBuilder()

    def test_edge_kinds(self, builder, coder):
        tasks = [
            make_task("a", phase="analysis"),
            make_task("b", ["a"], phase="design"),
            make_task("c", phase="design", optional_dependencies=["b"]),
        ]
        analysis = DependencyAnalyzer().analyze(tasks)
        graph = builder.build(tasks, analysis, {t.id: coder for t in tasks})

        edges = {(e.source, e.target): e for e in graph.edges}
        assert edges[("a", "b")].kind == DependencyKind.EXPLICIT
        assert edges[("a", "b")].required is True
        assert edges[("b", "c")].required is False
        assert edges[("a", "c")].kind == DependencyKind.IMPLICIT
        assert edges[("a", "c")].required is False
        assert graph.entry_points == ["a", "c"]

    def test_required_edge_wins(self, builder, coder):
        tasks = [make_task("a"), make_task("b")]
        analysis = DependencyAnalysis(dependencies={
            "a": DependencySet(),
            "b": DependencySet(explicit=["a"], implicit=["a"]),
        })
        graph = builder.build(tasks, analysis, {"a": coder, "b": coder})

        assert len(graph.edges) == 1
        assert graph.edges[0].required is True

    def test_warnings_are_carried(self, builder, coder):
        tasks = [make_task("A", ["B"]), make_task("B", ["A"])]
        analysis = DependencyAnalyzer().analyze(tasks)
        graph = builder.build(tasks, analysis, {"A": coder, "B": coder})

        assert len(graph.warnings) == 1
        assert graph.find_cycle() is None

    def test_duplicate_task(self, builder, coder):
        tasks = [make_task("a"), make_task("a")]
        analysis = DependencyAnalysis(dependencies={"a": DependencySet()})
        with pytest.raises(GraphInvalidError):
            builder.build(tasks, analysis, {"a": coder})

    def test_missing_assignment(self, builder, coder):
        tasks = [make_task("a"), make_task("b")]
        analysis = DependencyAnalyzer().analyze(tasks)
        with pytest.raises(GraphInvalidError) as exc_info:
            builder.build(tasks, analysis, {"a": coder})
        assert exc_info.value.details["node_id"] == "b"

    def test_dangling_dependency(self, builder, coder):
        tasks = [make_task("a", ["ghost"])]
        analysis = DependencyAnalyzer().analyze(tasks)
        with pytest.raises(GraphInvalidError):
            builder.build(tasks, analysis, {"a": coder})
