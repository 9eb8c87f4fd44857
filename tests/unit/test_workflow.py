"""
Workflow Engine Unit Tests

End-to-end build and budgeted execution through the facade.
"""

from unittest.mock import AsyncMock, patch

import pytest

from conftest import RecordingExecutor, make_graph, make_task

from pantheon_flow import BuildContext, WorkflowEngine
from pantheon_flow.errors import UnknownObjectiveError, ValidationError
from pantheon_flow.scheduling.cost_oracle import InMemoryCostOracle
from pantheon_flow.scheduling.types import WorkerResult
from pantheon_flow.task_graph import GraphOptimizer, Requirement
from pantheon_flow.task_graph.types import NodeStatus, Worker


class TestBuildWorkflow:
    """build_workflow tests"""

    def test_domain_requirement(self, config):
        engine = WorkflowEngine(config)
        build = engine.build_workflow(Requirement(name="shop", domains=["frontend", "backend"]))

        assert len(build.graph.nodes) == 4
        assert build.levels == [["task-0", "task-2"], ["task-1", "task-3"]]
        assert len(build.critical_path) == 2
        assert 0.0 <= build.confidence <= 1.0
        assert build.estimated_duration_ms > 0
        assert build.metadata["strategy"] == "domain"
        assert build.metadata["task_count"] == 4
        assert build.metadata["max_parallelism"] == 2
        assert build.metadata["optimization_goals"] == config.default_objectives

    def test_confidence_follows_optimized_assignments(self, config):
        novice = Worker(kind="external", name="novice", capabilities=frozenset({"*"}), score=1.0)

        def reassign(optimizer, graph, objectives):
            optimized = graph.copy()
            for node in optimized.nodes.values():
                node.worker = novice
            return optimized

        engine = WorkflowEngine(config)
        with patch.object(GraphOptimizer, "optimize", reassign):
            build = engine.build_workflow(Requirement(name="shop", domains=["frontend", "backend"]))

        assert all(w == novice for w in build.graph.assignments().values())
        assert build.confidence == pytest.approx(0.1)

    def test_required_edges_survive(self, config):
        engine = WorkflowEngine(config)
        build = engine.build_workflow(Requirement(name="shop", domains=["frontend", "backend"]))

        required = {(e.source, e.target) for e in build.graph.edges if e.required}
        assert required == {("task-0", "task-1"), ("task-2", "task-3")}

    def test_empty_requirement(self, config):
        engine = WorkflowEngine(config)
        build = engine.build_workflow(Requirement(name="void", description="zzz"))

        assert build.graph.nodes == {}
        assert build.levels == []
        assert build.warnings[0].startswith("DECOMPOSITION_EMPTY")
        assert build.metadata["task_count"] == 0

    def test_unknown_goal(self, config):
        engine = WorkflowEngine(config)
        context = BuildContext(optimization_goals=["teleport"])

        with pytest.raises(UnknownObjectiveError):
            engine.build_workflow(Requirement(name="shop", domains=["frontend"]), context)

    def test_forced_strategy(self, config):
        engine = WorkflowEngine(config)
        build = engine.build_workflow(
            Requirement(name="shop", domains=["frontend"], phases=["design", "testing"]),
            BuildContext(strategy="phase", optimization_goals=[]),
        )

        assert build.metadata["strategy"] == "phase"
        assert len(build.levels) == 2

    def test_to_dict(self, config):
        build = WorkflowEngine(config).build_workflow(Requirement(name="shop", domains=["backend"]))
        data = build.to_dict()

        assert set(data["graph"]["nodes"]) == {"task-0", "task-1"}
        assert data["levels"] == [["task-0"], ["task-1"]]


class TestRunBudgeted:
    """run_budgeted tests"""

    @pytest.mark.asyncio
    async def test_requires_executor(self, config):
        engine = WorkflowEngine(config)
        graph = make_graph([make_task("a")])

        with pytest.raises(ValidationError):
            await engine.run_budgeted(graph, "wf")

    @pytest.mark.asyncio
    async def test_build_then_run(self, config):
        oracle = InMemoryCostOracle()
        executor = RecordingExecutor()
        engine = WorkflowEngine(config, oracle=oracle, executor=executor)
        build = engine.build_workflow(Requirement(name="shop", domains=["frontend", "backend"]))

        result = await engine.run_budgeted(build.graph, "shop", "balanced", "economy", total_budget=100.0)

        assert result.policy == "economy"
        assert result.count(NodeStatus.SUCCEEDED) == 4
        assert result.success is True
        assert sorted(executor.calls) == ["task-0", "task-1", "task-2", "task-3"]
        assert oracle.get_budget("shop").limits == {"perTask": 0.1, "concurrent": 5.0}

        report = engine.get_execution_report(result.execution_id)
        assert report["tasks"]["succeeded"] == 4

    @pytest.mark.asyncio
    async def test_mocked_executor(self, config):
        executor = AsyncMock(return_value=WorkerResult(success=True, output="ok"))
        engine = WorkflowEngine(config, executor=executor)
        graph = make_graph([make_task("a"), make_task("b", ["a"])])

        result = await engine.run_budgeted(graph, "wf", "cost-optimized", total_budget=10.0)

        assert executor.await_count == 2
        assert [call.args[0].id for call in executor.await_args_list] == ["a", "b"]
        assert result.tasks["b"].output == "ok"

    @pytest.mark.asyncio
    async def test_unknown_policy_falls_back(self, config):
        engine = WorkflowEngine(config, executor=RecordingExecutor())

        result = await engine.run_budgeted(make_graph([make_task("a")]), "wf", policy="platinum")

        assert result.policy == config.default_policy

    def test_report_before_any_run(self, config):
        assert WorkflowEngine(config).get_execution_report("exec-nope") is None
