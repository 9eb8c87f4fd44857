"""
Graph optimizer tests
"""

import pytest

from conftest import make_graph, make_task

from pantheon_flow.errors import UnknownObjectiveError
from pantheon_flow.task_graph.optimizer import GraphOptimizer
from pantheon_flow.task_graph.types import Worker


EXTERNAL_CODER = Worker(kind="external", name="coder", capabilities=frozenset({"code"}))
SLOW_CODER = Worker(kind="external", name="slow", capabilities=frozenset({"code"}), speed_factor=2.0)
FAST_CODER = Worker(kind="external", name="fast", capabilities=frozenset({"code"}), speed_factor=0.5)


def code_task(task_id, deps=None, **kwargs):
    return make_task(task_id, deps, required_capabilities=["code"], **kwargs)


class TestGraphOptimizer:
    """GraphOptimizer tests"""

    def test_unknown_objective(self, config, coder):
        graph = make_graph([make_task("a")], worker=coder)
        with pytest.raises(UnknownObjectiveError) as exc_info:
            GraphOptimizer(config).optimize(graph, ["minimize-handoffs", "teleport"])
        assert exc_info.value.objective == "teleport"

    def test_original_graph_untouched(self, config, coder):
        graph = make_graph(
            [code_task("a"), code_task("b", ["a"]), code_task("c", ["b"])],
            workers={"a": EXTERNAL_CODER, "b": EXTERNAL_CODER, "c": coder},
        )
        optimized = GraphOptimizer(config).optimize(graph, ["minimize-handoffs"])

        assert graph.nodes["c"].worker == coder
        assert optimized is not graph

    def test_minimize_handoffs(self, config, coder):
        graph = make_graph(
            [code_task("a"), code_task("b", ["a"]), code_task("c", ["b"])],
            workers={"a": EXTERNAL_CODER, "b": EXTERNAL_CODER, "c": coder},
        )
        optimized = GraphOptimizer(config).optimize(graph, ["minimize-handoffs"])

        assert {n.worker.key for n in optimized.nodes.values()} == {EXTERNAL_CODER.key}

    def test_handoffs_respect_capabilities(self, config, coder):
        graph = make_graph(
            [code_task("a"), code_task("b", ["a"]), make_task("c", ["b"], required_capabilities=["deploy"])],
            workers={"a": EXTERNAL_CODER, "b": EXTERNAL_CODER, "c": coder},
        )
        optimized = GraphOptimizer(config).optimize(graph, ["minimize-handoffs"])
        assert optimized.nodes["c"].worker == coder

    def test_handoffs_need_a_dominant_worker(self, config, coder):
        graph = make_graph(
            [code_task("a"), code_task("b", ["a"])],
            workers={"a": EXTERNAL_CODER, "b": coder},
        )
        optimized = GraphOptimizer(config).optimize(graph, ["minimize-handoffs"])
        assert optimized.assignments() == graph.assignments()

    def test_maximize_parallelism_drops_implicit_edges(self, config, coder):
        graph = make_graph(
            [make_task("a"), make_task("b"), make_task("c", ["a"])],
            worker=coder,
            implicit_edges=[("a", "b")],
            optional_edges=[("b", "c")],
        )
        optimized = GraphOptimizer(config).optimize(graph, ["maximize-parallelism"])

        pairs = {(e.source, e.target) for e in optimized.edges}
        assert ("a", "b") not in pairs
        assert ("a", "c") in pairs
        assert ("b", "c") in pairs

    def test_no_new_edges_and_required_kept(self, config, coder):
        graph = make_graph(
            [make_task("a"), make_task("b", ["a"]), make_task("c"), make_task("d", ["c"])],
            worker=coder,
            implicit_edges=[("a", "c"), ("b", "d")],
        )
        optimized = GraphOptimizer(config).optimize(
            graph, ["minimize-handoffs", "maximize-parallelism", "balance-workload", "optimize-speed"]
        )

        assert set(optimized.edges) <= set(graph.edges)
        assert {e for e in graph.edges if e.required} <= set(optimized.edges)
        assert set(optimized.nodes) == set(graph.nodes)

    def test_balance_workload(self, config, coder):
        tasks = [code_task(f"t{i}") for i in range(1, 5)] + [code_task("t5")]
        tasks[0].critical = True
        graph = make_graph(tasks, worker=coder, workers={"t5": EXTERNAL_CODER})

        optimized = GraphOptimizer(config).optimize(graph, ["balance-workload"])
        keys = {nid: node.worker.key for nid, node in optimized.nodes.items()}

        assert keys["t1"] == coder.key
        assert keys["t2"] == EXTERNAL_CODER.key
        assert list(keys.values()).count(coder.key) == 3

    def test_optimize_speed(self, config):
        graph = make_graph([code_task("a"), code_task("b", ["a"])], worker=SLOW_CODER)
        optimizer = GraphOptimizer(config, workers=[FAST_CODER])

        optimized = optimizer.optimize(graph, ["optimize-speed"])

        assert all(node.worker == FAST_CODER for node in optimized.nodes.values())
        assert optimizer.leveler.estimate_duration(optimized) < optimizer.leveler.estimate_duration(graph)

    def test_default_objectives_are_idempotent(self, config, coder):
        graph = make_graph(
            [code_task("a"), code_task("b", ["a"]), code_task("c", ["b"]), make_task("d")],
            workers={"a": EXTERNAL_CODER, "b": EXTERNAL_CODER, "c": coder, "d": coder},
            implicit_edges=[("a", "d")],
        )
        optimizer = GraphOptimizer(config)

        once = optimizer.optimize(graph, config.default_objectives)
        twice = optimizer.optimize(once, config.default_objectives)

        assert twice.assignments() == once.assignments()
        assert twice.edges == once.edges

    def test_register_objective(self, config, coder):
        optimizer = GraphOptimizer(config)
        seen = []
        optimizer.register_objective("noop", lambda graph: seen.append(len(graph.nodes)) or 0)

        optimizer.optimize(make_graph([make_task("a")], worker=coder), ["noop"])

        assert seen == [1]
        assert "noop" in optimizer.objectives
