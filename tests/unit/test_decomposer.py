"""
Decomposer tests
"""

import pytest

from conftest import make_task

from pantheon_flow.errors import DecompositionEmpty, UnknownStrategyError
from pantheon_flow.task_graph.decomposer import Decomposer, DecompositionStrategy, Requirement
from pantheon_flow.task_graph.types import Task


class TestStrategySelection:
    """Strategy selection tests"""

    @pytest.fixture
    def decomposer(self, config):
        return Decomposer(config)

    def test_domains_win(self, decomposer):
        req = Requirement(domains=["backend"], phases=["design"], goals=["x"])
        assert decomposer.select_strategy(req) == "domain"

    def test_phases_or_phased_workflow(self, decomposer):
        assert decomposer.select_strategy(Requirement(phases=["design"])) == "phase"
        assert decomposer.select_strategy(Requirement(workflow="phased")) == "phase"

    def test_goals(self, decomposer):
        assert decomposer.select_strategy(Requirement(goals=["Ship it"])) == "goal"

    def test_fallback_is_capability(self, decomposer):
        assert decomposer.select_strategy(Requirement(description="analyze logs")) == "capability"


class TestDecompose:
    """Decomposition tests"""

    @pytest.fixture
    def decomposer(self, config):
        return Decomposer(config)

    def test_domain_pairs(self, decomposer):
        tasks = decomposer.decompose(Requirement(name="shop", domains=["frontend", "backend"]))

        assert [t.id for t in tasks] == ["task-0", "task-1", "task-2", "task-3"]
        assert [t.type for t in tasks] == ["design", "implement", "design", "implement"]
        assert tasks[0].description == "Design user interface"
        assert tasks[1].dependencies == ["task-0"]
        assert tasks[3].dependencies == ["task-2"]
        assert tasks[1].phase == "implementation"

    def test_other_domain_gets_analysis(self, decomposer):
        tasks = decomposer.decompose(Requirement(domains=["data"]))
        assert tasks[0].type == "analyze"
        assert tasks[0].phase == "analysis"
        assert tasks[0].description == "Analyze data requirements"
        assert tasks[1].description == "Implement data solution"

    def test_phase_chain(self, decomposer):
        tasks = decomposer.decompose(Requirement(description="portal", phases=["analysis", "design", "review"]))

        assert [t.type for t in tasks] == ["analyze", "design", "generic"]
        assert tasks[0].dependencies == []
        assert tasks[1].dependencies == [tasks[0].id]
        assert tasks[2].dependencies == [tasks[1].id]
        assert tasks[2].description == "Complete review phase for: portal"
        assert tasks[1].required_capabilities == ["design", "architect"]

    def test_phased_workflow_uses_configured_order(self, decomposer, config):
        tasks = decomposer.decompose(Requirement(workflow="phased"))
        assert [t.phase for t in tasks] == config.phase_order

    def test_capability_with_coordination(self, decomposer):
        req = Requirement(description="research, design, build and test the portal")
        tasks = decomposer.decompose(req)

        assert [t.type for t in tasks] == ["analyze", "design", "implement", "test", "coordinate"]
        assert tasks[0].phase == "analysis"
        coordinator = tasks[-1]
        assert coordinator.metadata["coordination"] is True
        # 1 + 2 capabilities * 0.5 + 2 for coordination
        assert coordinator.complexity == 4

    def test_capability_without_coordination(self, decomposer):
        tasks = decomposer.decompose(Requirement(description="deploy the service"))
        assert [t.type for t in tasks] == ["deploy"]

    def test_goal_expansion(self, decomposer):
        tasks = decomposer.decompose(Requirement(goals=["Build a dashboard", "Improve docs"]))

        assert len(tasks) == 5
        assert all(t.type == "goal" for t in tasks)
        assert tasks[0].description == "Understand requirements for: Build a dashboard"
        assert tasks[3].dependencies == [tasks[2].id]
        assert tasks[4].description == "Improve docs"
        assert tasks[4].dependencies == []

    def test_enrichment(self, decomposer, config):
        tasks = decomposer.decompose(Requirement(domains=["frontend"], critical_task_types=["implement"]))
        design, implement = tasks

        assert design.required_capabilities == ["design"]
        assert design.complexity == 2
        assert design.estimated_duration_ms == config.base_task_duration_ms * 2
        assert implement.critical is True
        assert design.critical is False

    def test_optional_task_types(self, decomposer):
        tasks = decomposer.decompose(Requirement(domains=["data"], optional_task_types=["analyze"]))
        assert tasks[0].optional is True

    def test_forced_strategy(self, decomposer):
        tasks = decomposer.decompose(Requirement(domains=["backend"]), strategy=DecompositionStrategy.PHASE)
        assert [t.phase for t in tasks][:2] == ["analysis", "design"]

    def test_unknown_strategy(self, decomposer):
        with pytest.raises(UnknownStrategyError) as exc_info:
            decomposer.decompose(Requirement(), strategy="llm")
        assert exc_info.value.strategy == "llm"

    def test_empty_decomposition(self, decomposer):
        req = Requirement(name="void", description="zzz")
        assert decomposer.decompose(req) == []
        with pytest.raises(DecompositionEmpty) as exc_info:
            decomposer.decompose(req, strict=True)
        assert exc_info.value.code == "DECOMPOSITION_EMPTY"

    def test_registered_strategy_gets_unique_ids(self, decomposer):
        def duplicate(requirement, next_id):
            return [Task(id="a", description="first"), Task(id="a", description="second")]

        decomposer.register_strategy("dup", duplicate)
        tasks = decomposer.decompose(Requirement(), strategy="dup")

        assert "dup" in decomposer.strategies
        assert [t.id for t in tasks] == ["a", "task-0"]


class TestComplexity:
    """Complexity assessment tests"""

    def test_rounds_half_up(self):
        assert Decomposer.assess_complexity(make_task("t", required_capabilities=["code"])) == 2

    def test_dependencies_count(self):
        task = make_task("t", ["a", "b", "c"], required_capabilities=["code", "test"])
        assert Decomposer.assess_complexity(task) == 3

    def test_capped_at_ten(self):
        task = make_task("t", required_capabilities=[f"c{i}" for i in range(20)])
        assert Decomposer.assess_complexity(task) == 10

    def test_identify_required_capabilities(self, config):
        decomposer = Decomposer(config)
        task = make_task("t", description="Verify and build the importer")
        assert decomposer.identify_required_capabilities(task) == ["implement", "test"]
