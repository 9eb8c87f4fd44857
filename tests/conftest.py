"""
Pytest Configuration and Fixtures

Shared fixtures for workflow construction and scheduling tests.
"""

import asyncio
import math
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from pantheon_flow.config import EngineConfig, SchedulingPolicy
from pantheon_flow.scheduling.cost_oracle import CostOracle
from pantheon_flow.scheduling.types import BudgetEvent, BudgetEventType, Cost, WorkerResult
from pantheon_flow.task_graph.types import (
    Dependency,
    DependencyKind,
    ExecutionGraph,
    ExecutionNode,
    Task,
    Worker,
)


CODER = Worker(
    kind="builtin",
    name="hephaestus",
    capabilities=frozenset({"implement", "code", "build", "develop"}),
    model="claude-3-opus",
)


def make_task(task_id: str, deps: Optional[List[str]] = None, **kwargs) -> Task:
    """Task helper for tests"""
    return Task(
        id=task_id,
        description=kwargs.pop("description", f"Task {task_id}"),
        dependencies=list(deps or []),
        **kwargs
    )


def make_graph(
    tasks: Iterable[Task],
    worker: Worker = CODER,
    workers: Optional[Dict[str, Worker]] = None,
    optional_edges: Iterable[tuple] = (),
    implicit_edges: Iterable[tuple] = (),
) -> ExecutionGraph:
    """
    Graph helper for tests.

    Task dependencies become required explicit edges; extra non-required edges
    are given as (source, target) pairs.
    """
    workers = workers or {}
    tasks = list(tasks)
    nodes = {t.id: ExecutionNode(task=t, worker=workers.get(t.id, worker)) for t in tasks}
    edges = [
        Dependency(dep, t.id, DependencyKind.EXPLICIT, True)
        for t in tasks for dep in t.dependencies
    ]
    edges += [Dependency(s, t, DependencyKind.EXPLICIT, False) for s, t in optional_edges]
    edges += [Dependency(s, t, DependencyKind.IMPLICIT, False) for s, t in implicit_edges]
    return ExecutionGraph(nodes=nodes, edges=edges)


class StaticCostOracle(CostOracle):
    """
    Cost oracle with fixed per-task costs.

    Each executed task is charged its cost (times the model factor of the
    worker that ran it) when its compute usage is reported.
    """

    def __init__(
        self,
        costs: Dict[str, float],
        default_cost: float = 1.0,
        model_factors: Optional[Dict[str, float]] = None,
        alternatives: Optional[Dict[str, List[str]]] = None,
        actual_costs: Optional[Dict[str, float]] = None,
    ):
        super().__init__()
        self.costs = costs
        self.default_cost = default_cost
        self.model_factors = model_factors or {}
        self.alternatives = alternatives or {}
        self.actual_costs = actual_costs or {}
        self.budgets: Dict[str, float] = {}
        self.limits: Dict[str, Dict[str, float]] = {}
        self.usage: List[Dict[str, Any]] = []

    def _cost(self, task_id: str, model: Optional[str]) -> float:
        return self.costs.get(task_id, self.default_cost) * self.model_factors.get(model, 1.0)

    async def estimate_task_cost(self, task: Task, worker: Worker) -> Cost:
        return Cost(total=self._cost(task.id, worker.model))

    async def track_usage(self, worker_id, metric, amount, tags=None) -> float:
        tags = tags or {}
        self.usage.append({"worker": worker_id, "metric": metric, "amount": amount, "tags": tags})
        if metric != "compute":
            return 0.0

        task_id = tags.get("task_id")
        if task_id in self.actual_costs:
            cost = self.actual_costs[task_id]
        else:
            cost = self._cost(task_id, tags.get("model"))

        budget_id = tags.get("budget_id")
        if budget_id in self.budgets:
            self.budgets[budget_id] -= cost
            if self.budgets[budget_id] <= 0:
                self.publish(BudgetEvent(type=BudgetEventType.EXCEEDED, budget_id=budget_id))
        return cost

    async def get_remaining_budget(self, budget_id: str) -> float:
        return self.budgets.get(budget_id, math.inf)

    async def set_budget(self, budget_id, total, limits=None) -> None:
        self.budgets[budget_id] = math.inf if total is None else total
        self.limits[budget_id] = dict(limits or {})

    async def find_cheaper_alternatives(self, worker: Worker, max_cost: float) -> List[Worker]:
        return [
            Worker(kind=worker.kind, name=worker.name, capabilities=worker.capabilities, model=model)
            for model in self.alternatives.get(worker.model, [])
        ]


class RecordingExecutor:
    """
    Worker executor that records calls and observed concurrency.

    `hooks` maps task ids to async callables run before the task completes;
    `delays` overrides the sleep per task id.
    """

    def __init__(
        self,
        delay: float = 0.01,
        delays: Optional[Dict[str, float]] = None,
        fail: Iterable[str] = (),
        hooks: Optional[Dict[str, Callable[[], Awaitable[None]]]] = None,
        result_factory: Optional[Callable[[Task], WorkerResult]] = None,
    ):
        self.delay = delay
        self.delays = delays or {}
        self.fail = set(fail)
        self.hooks = hooks or {}
        self.result_factory = result_factory
        self.calls: List[str] = []
        self.workers: Dict[str, Worker] = {}
        self.running = 0
        self.max_running = 0

    async def __call__(self, task: Task, worker: Worker) -> WorkerResult:
        self.calls.append(task.id)
        self.workers[task.id] = worker
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.delays.get(task.id, self.delay))
            if task.id in self.hooks:
                await self.hooks[task.id]()
            if task.id in self.fail:
                raise RuntimeError(f"{task.id} blew up")
        finally:
            self.running -= 1

        if self.result_factory:
            return self.result_factory(task)
        return WorkerResult(success=True, output=f"done:{task.id}")


@pytest.fixture
def config() -> EngineConfig:
    """Default engine configuration"""
    return EngineConfig()


@pytest.fixture
def policy() -> SchedulingPolicy:
    """Permissive policy without downgrades"""
    return SchedulingPolicy(
        name="test",
        max_concurrent_tasks=10,
        fallback_on_budget_exceed=True,
        allow_downgrade=False,
    )


@pytest.fixture
def coder() -> Worker:
    return CODER


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()
