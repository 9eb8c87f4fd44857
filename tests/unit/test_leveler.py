"""
Leveler tests
"""

from unittest.mock import patch

import pytest

from conftest import make_graph, make_task

from pantheon_flow.config import EngineConfig
from pantheon_flow.errors import GraphInvalidError
from pantheon_flow.task_graph.leveler import Leveler
from pantheon_flow.task_graph.types import ExecutionGraph, Worker


def diamond():
    """A -> B -> D and A -> C -> D with B the slow branch"""
    return make_graph([
        make_task("A", estimated_duration_ms=1000.0),
        make_task("B", ["A"], estimated_duration_ms=5000.0),
        make_task("C", ["A"], estimated_duration_ms=2000.0),
        make_task("D", ["B", "C"], estimated_duration_ms=1000.0),
    ])


class TestLevelize:
    """Kahn leveling tests"""

    @pytest.fixture
    def leveler(self, config):
        return Leveler(config)

    def test_fan_out(self, leveler):
        graph = make_graph([make_task("A"), make_task("B", ["A"]), make_task("C", ["A"])])
        assert leveler.levelize(graph) == [["A"], ["B", "C"]]

    def test_independent_tasks_share_a_level(self, leveler):
        graph = make_graph([make_task("c"), make_task("a"), make_task("b")])
        assert leveler.levelize(graph) == [["a", "b", "c"]]

    def test_optional_edges(self, leveler):
        graph = make_graph([make_task("a"), make_task("b")], optional_edges=[("a", "b")])
        assert leveler.levelize(graph) == [["a", "b"]]
        assert leveler.levelize(graph, include_optional=True) == [["a"], ["b"]]

    def test_every_predecessor_in_earlier_level(self, leveler):
        graph = diamond()
        levels = leveler.levelize(graph)
        index = {nid: i for i, level in enumerate(levels) for nid in level}
        for edge in graph.edges:
            assert index[edge.source] < index[edge.target]

    def test_cycle(self, leveler):
        graph = make_graph([make_task("a", ["b"]), make_task("b", ["a"])])
        with pytest.raises(GraphInvalidError):
            leveler.levelize(graph)

    def test_empty(self, leveler):
        assert leveler.levelize(ExecutionGraph()) == []
        assert Leveler.max_parallelism([]) == 0

    def test_max_parallelism(self, leveler):
        assert Leveler.max_parallelism(leveler.levelize(diamond())) == 2


class TestCriticalPath:
    """Critical path tests"""

    def test_longest_branch(self, config):
        leveler = Leveler(config)
        graph = diamond()
        path = leveler.critical_path(graph)

        assert path == ["A", "B", "D"]
        assert leveler.estimate_duration(graph, path) == 7000.0

    def test_not_shorter_than_any_node(self, config):
        leveler = Leveler(config)
        graph = diamond()
        total = leveler.estimate_duration(graph)
        assert all(total >= node.estimated_duration_ms for node in graph.nodes.values())

    def test_dp_matches_enumeration(self):
        graph = diamond()
        exhaustive = Leveler(EngineConfig()).critical_path(graph)
        dp = Leveler(EngineConfig(critical_path_dp_threshold=0)).critical_path(graph)
        assert dp == exhaustive

    def test_count_paths(self, config):
        assert Leveler(config).count_paths(diamond()) == 2

    def test_many_paths_use_dp(self, config):
        tasks = []
        for layer in range(22):
            deps = [f"L{layer - 1}_{j}" for j in range(2)] if layer else []
            tasks += [make_task(f"L{layer}_{j}", deps, estimated_duration_ms=1000.0) for j in range(2)]
        graph = make_graph(tasks)
        leveler = Leveler(config)

        with patch.object(Leveler, "_critical_path_exhaustive") as enumerate_paths:
            path = leveler.critical_path(graph)

        enumerate_paths.assert_not_called()
        assert leveler.count_paths(graph) == 2 ** 22
        assert len(path) == 22
        assert leveler.estimate_duration(graph, path) == 22000.0

    def test_path_cap_matches_enumeration(self):
        exhaustive = Leveler(EngineConfig()).critical_path(diamond())
        capped = Leveler(EngineConfig(critical_path_max_paths=1)).critical_path(diamond())
        assert capped == exhaustive

    def test_worker_speed_counts(self, config):
        slow = Worker(kind="builtin", name="slow", speed_factor=4.0)
        graph = make_graph(
            [
                make_task("A", estimated_duration_ms=1000.0),
                make_task("B", ["A"], estimated_duration_ms=5000.0),
                make_task("C", ["A"], estimated_duration_ms=2000.0),
            ],
            workers={"C": slow},
        )
        assert Leveler(config).critical_path(graph) == ["A", "C"]

    def test_empty_graph(self, config):
        leveler = Leveler(config)
        assert leveler.critical_path(ExecutionGraph()) == []
        assert leveler.estimate_duration(ExecutionGraph()) == 0
