"""
Workflow Engine - facade over graph construction and budgeted execution.

Wires the decomposer, dependency analyzer, agent selector, graph builder,
optimizer, leveler and scheduler together behind three calls.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import EngineConfig, SchedulingPolicy
from .errors import DecompositionEmpty, ValidationError
from .scheduling import (
    BudgetedScheduler,
    CostOracle,
    ExecutionResult,
    InMemoryCostOracle,
    RunLogger,
    SchedulingStrategy,
    WorkerExecutor,
)
from .task_graph import (
    AgentSelector,
    Decomposer,
    DecompositionStrategy,
    DependencyAnalyzer,
    ExecutionGraph,
    GraphBuilder,
    GraphOptimizer,
    Level,
    Leveler,
    Requirement,
    Worker,
)
from .task_graph.agent_selector import Recommender

logger = logging.getLogger(__name__)


class BuildContext(BaseModel):
    """Caller-supplied context for building a workflow."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    workers: List[Worker] = Field(default_factory=list)  # external workers
    optimization_goals: Optional[List[str]] = None  # None -> configured defaults
    phase_order: Optional[List[str]] = None
    strategy: Optional[Union[str, DecompositionStrategy]] = None


@dataclass
class WorkflowBuild:
    """A built, optimized workflow ready to schedule."""
    graph: ExecutionGraph
    levels: List[Level] = field(default_factory=list)
    critical_path: List[str] = field(default_factory=list)
    estimated_duration_ms: float = 0.0
    confidence: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph": self.graph.to_dict(),
            "levels": [list(level) for level in self.levels],
            "critical_path": list(self.critical_path),
            "estimated_duration_ms": self.estimated_duration_ms,
            "confidence": self.confidence,
            "metadata": dict(self.metadata),
            "warnings": list(self.warnings),
        }


class WorkflowEngine:
    """
    Builds execution graphs from requirements and runs them under budgets.

    Example:
        engine = WorkflowEngine(executor=call_worker)
        build = engine.build_workflow(Requirement(name="shop", domains=["frontend", "backend"]))
        result = await engine.run_budgeted(
            build.graph, "shop-budget", "balanced", "economy", total_budget=2.0
        )
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        oracle: Optional[CostOracle] = None,
        executor: Optional[WorkerExecutor] = None,
        recommender: Optional[Recommender] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration
            oracle: Cost oracle (defaults to an InMemoryCostOracle)
            executor: Performs a task on a worker; required by run_budgeted
            recommender: Optional extra worker recommendations per task
            run_logger: Structured scheduler decision log
        """
        self.config = config or EngineConfig()
        self.oracle = oracle or InMemoryCostOracle()
        self.executor = executor

        self.decomposer = Decomposer(self.config)
        self.analyzer = DependencyAnalyzer(self.config)
        self.selector = AgentSelector(self.config, recommender=recommender)
        self.builder = GraphBuilder()
        self.leveler = Leveler(self.config)
        self.run_logger = run_logger or RunLogger()

        self._scheduler: Optional[BudgetedScheduler] = None

    @property
    def scheduler(self) -> BudgetedScheduler:
        if self._scheduler is None:
            if self.executor is None:
                raise ValidationError("A worker executor is required to run workflows", field="executor")
            self._scheduler = BudgetedScheduler(
                self.oracle,
                self.executor,
                config=self.config,
                run_logger=self.run_logger,
                leveler=self.leveler,
            )
        return self._scheduler

    def build_workflow(
        self,
        requirement: Requirement,
        context: Optional[BuildContext] = None,
    ) -> WorkflowBuild:
        """
        Turn a requirement into an optimized execution graph.

        Args:
            requirement: What to build
            context: External workers, objectives, phase order, forced strategy

        Returns:
            WorkflowBuild; an empty graph with a DECOMPOSITION_EMPTY warning
            when the requirement yields no tasks

        Raises:
            UnknownStrategyError: If a forced decomposition strategy is unknown
            UnknownObjectiveError: If an optimization goal is unknown
            CycleUnresolvable: If dependency cycles cannot be repaired
        """
        context = context or BuildContext()
        strategy = context.strategy
        if isinstance(strategy, DecompositionStrategy):
            strategy = strategy.value
        strategy = strategy or self.decomposer.select_strategy(requirement)
        goals = (
            list(context.optimization_goals)
            if context.optimization_goals is not None
            else list(self.config.default_objectives)
        )

        metadata: Dict[str, Any] = {
            "requirement": requirement.name,
            "strategy": strategy,
            "optimization_goals": goals,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            tasks = self.decomposer.decompose(requirement, strategy=strategy, strict=True)
        except DecompositionEmpty as e:
            logger.warning(e.message)
            warning = f"{e.code}: {e.message}"
            metadata["task_count"] = 0
            return WorkflowBuild(
                graph=ExecutionGraph(warnings=[warning]),
                metadata=metadata,
                warnings=[warning],
            )

        analysis = self.analyzer.analyze(tasks, phase_order=context.phase_order)
        assignments = self.selector.assign(tasks, context.workers)
        graph = self.builder.build(tasks, analysis, assignments)

        optimizer = GraphOptimizer(self.config, workers=context.workers, leveler=self.leveler)
        graph = optimizer.optimize(graph, goals)

        levels = self.leveler.levelize(graph)
        critical_path = self.leveler.critical_path(graph)
        confidence = self.selector.calculate_confidence(
            [node.task for node in graph.nodes.values()], graph.assignments()
        )

        metadata.update({
            "task_count": len(graph.nodes),
            "edge_count": len(graph.edges),
            "removed_edges": [d.to_dict() for d in analysis.removed_edges],
            "max_parallelism": self.leveler.max_parallelism(levels),
        })

        logger.info(
            f"Built workflow '{requirement.name}': {len(graph.nodes)} tasks, "
            f"{len(levels)} level(s), confidence={confidence:.2f}"
        )

        return WorkflowBuild(
            graph=graph,
            levels=levels,
            critical_path=critical_path,
            estimated_duration_ms=self.leveler.estimate_duration(graph, critical_path),
            confidence=confidence,
            metadata=metadata,
            warnings=list(graph.warnings),
        )

    def optimize(
        self,
        graph: ExecutionGraph,
        objectives: List[str],
        workers: Optional[List[Worker]] = None,
    ) -> ExecutionGraph:
        """Apply optimization objectives to a copy of the graph."""
        optimizer = GraphOptimizer(self.config, workers=workers or (), leveler=self.leveler)
        return optimizer.optimize(graph, objectives)

    async def run_budgeted(
        self,
        graph: ExecutionGraph,
        budget_id: str,
        strategy: Union[str, SchedulingStrategy] = SchedulingStrategy.BALANCED,
        policy: Optional[Union[str, SchedulingPolicy]] = None,
        total_budget: Optional[float] = None,
        levels: Optional[List[Level]] = None,
    ) -> ExecutionResult:
        """
        Execute a graph under a budget.

        Args:
            graph: Graph to execute
            budget_id: Budget to charge
            strategy: Scheduling strategy
            policy: SchedulingPolicy or the name of a configured policy
            total_budget: If given, (re)creates the budget with this total first
            levels: Precomputed levels for performance-optimized

        Returns:
            ExecutionResult
        """
        if not isinstance(policy, SchedulingPolicy):
            policy = self.config.get_policy(policy)

        scheduler = self.scheduler

        if total_budget is not None:
            limits = {
                "perTask": policy.max_cost_per_task,
                "concurrent": float(policy.max_concurrent_tasks),
            }
            await self.oracle.set_budget(budget_id, total_budget, limits)

        return await scheduler.run(graph, budget_id, strategy, policy, levels=levels)

    def get_execution_report(self, execution_id: str) -> Optional[Dict[str, Any]]:
        """Report for a finished or running execution, None if unknown."""
        if self._scheduler is None:
            return None
        return self._scheduler.get_execution_report(execution_id)
