"""
Cost oracle: cost estimation, usage tracking and budgets.

`CostOracle` is the interface the scheduler consumes. `InMemoryCostOracle`
keeps everything in process memory and pushes budget events to subscribed
queues.
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ..errors import ValidationError
from ..task_graph.types import ExecutionGraph, Task, Worker
from .types import BudgetEvent, BudgetEventType, Cost, WorkflowCostEstimate

logger = logging.getLogger(__name__)


class CostOracle(ABC):
    """
    Resource and budget manager consulted by the scheduler.

    Subscribers register an asyncio.Queue and receive BudgetEvents on it; the
    oracle never calls back into a run directly.
    """

    def __init__(self):
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self, queue: asyncio.Queue) -> None:
        """Start delivering budget events to a queue."""
        if queue not in self._subscribers:
            self._subscribers.append(queue)

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Stop delivering budget events to a queue."""
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: BudgetEvent) -> None:
        """Post an event to every subscriber."""
        logger.debug(f"Publishing {event.type.value} (budget={event.budget_id})")
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    @abstractmethod
    async def estimate_task_cost(self, task: Task, worker: Worker) -> Cost:
        """Estimate the cost of running a task on a worker."""

    async def estimate_workflow_cost(self, graph: ExecutionGraph) -> WorkflowCostEstimate:
        """Estimate every node of a graph with its assigned worker."""
        estimate = WorkflowCostEstimate(total=0.0)
        historical = 0

        for nid, node in graph.nodes.items():
            cost = await self.estimate_task_cost(node.task, node.worker)
            estimate.tasks[nid] = cost
            estimate.total += cost.total
            estimate.by_worker[node.worker.key] = estimate.by_worker.get(node.worker.key, 0.0) + cost.total
            for resource, amount in cost.breakdown.items():
                estimate.by_resource[resource] = estimate.by_resource.get(resource, 0.0) + amount
            if cost.historical:
                historical += 1

        estimate.confidence = historical / len(graph.nodes) if graph.nodes else 0.0
        return estimate

    @abstractmethod
    async def track_usage(
        self,
        worker_id: str,
        metric: str,
        amount: float,
        tags: Optional[Dict[str, Any]] = None,
    ) -> float:
        """Record usage and return its cost."""

    @abstractmethod
    async def get_remaining_budget(self, budget_id: str) -> float:
        """Remaining balance of a budget (infinite when unknown)."""

    @abstractmethod
    async def set_budget(
        self,
        budget_id: str,
        total: Optional[float],
        limits: Optional[Dict[str, float]] = None,
    ) -> None:
        """Create or reset a budget."""

    @abstractmethod
    async def find_cheaper_alternatives(self, worker: Worker, max_cost: float) -> List[Worker]:
        """Cheaper variants of a worker, best first."""


@dataclass
class Budget:
    """A spend ceiling and its running balance."""
    id: str
    total: float
    remaining: float
    limits: Dict[str, float] = field(default_factory=dict)
    alerts: List[Tuple[float, str]] = field(default_factory=list)
    created: float = field(default_factory=time.time)

    @property
    def percent_used(self) -> float:
        if math.isinf(self.total) or self.total <= 0:
            return 0.0
        return 1 - (self.remaining / self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "total": self.total,
            "remaining": self.remaining,
            "limits": dict(self.limits),
            "percent_used": self.percent_used,
        }


@dataclass
class UsageEntry:
    """One tracked usage record."""
    worker_id: str
    metric: str
    amount: float
    cost: float
    timestamp: float
    tags: Dict[str, Any] = field(default_factory=dict)


DEFAULT_TOKEN_COSTS: Dict[str, Dict[str, float]] = {
    # per 1K tokens
    "claude-3-opus": {"input": 0.015, "output": 0.075},
    "claude-3-sonnet": {"input": 0.003, "output": 0.015},
    "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
    "gpt-4": {"input": 0.03, "output": 0.06},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
}

DEFAULT_COMPUTE_COSTS: Dict[str, float] = {
    "cpu-hour": 0.10,
    "gpu-hour": 0.50,
    "memory-gb-hour": 0.01,
}

DEFAULT_API_COSTS: Dict[str, float] = {
    "api-call": 0.0001,
    "webhook": 0.0002,
    "storage-gb": 0.023,
}

DEFAULT_DOWNGRADES: Dict[str, List[str]] = {
    "claude-3-opus": ["claude-3-sonnet", "claude-3-haiku"],
    "claude-3-sonnet": ["claude-3-haiku"],
    "gpt-4": ["gpt-3.5-turbo"],
}

DEFAULT_ALERTS: List[Tuple[float, str]] = [(0.8, "warning"), (0.95, "critical")]

METRICS = ("tokens", "compute", "api", "storage")


class InMemoryCostOracle(CostOracle):
    """
    Process-local cost oracle.

    Features:
    - Token, compute and API cost models
    - Budgets with one-shot warning/critical alerts and an exceeded event
    - Estimates from historical averages, else complexity heuristics
    - Usage spike and low-budget anomaly detection

    Example:
        oracle = InMemoryCostOracle()
        await oracle.set_budget("wf-1", 5.0)
        cost = await oracle.estimate_task_cost(task, worker)
    """

    def __init__(
        self,
        token_costs: Optional[Dict[str, Dict[str, float]]] = None,
        compute_costs: Optional[Dict[str, float]] = None,
        api_costs: Optional[Dict[str, float]] = None,
        downgrades: Optional[Dict[str, List[str]]] = None,
        monitoring_interval: float = 60.0,
        history_limit: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the oracle.

        Args:
            token_costs: Per-model cost per 1K input/output tokens
            compute_costs: Cost per compute unit type
            api_costs: Cost per API call type
            downgrades: Model -> cheaper models, nearest first
            monitoring_interval: Anomaly window length in seconds
            history_limit: Max usage entries kept
            clock: Time source in seconds
        """
        super().__init__()
        self.token_costs = token_costs or dict(DEFAULT_TOKEN_COSTS)
        self.compute_costs = compute_costs or dict(DEFAULT_COMPUTE_COSTS)
        self.api_costs = api_costs or dict(DEFAULT_API_COSTS)
        self.downgrades = downgrades or dict(DEFAULT_DOWNGRADES)
        self.monitoring_interval = monitoring_interval
        self._clock = clock

        self._budgets: Dict[str, Budget] = {}
        self._fired_alerts: set = set()
        self._exceeded: set = set()
        self._totals: Dict[str, Dict[str, float]] = {metric: {} for metric in METRICS}
        self._history: Deque[UsageEntry] = deque(maxlen=history_limit)
        self._monitor_task: Optional[asyncio.Task] = None

    # ---- budgets ----

    async def set_budget(
        self,
        budget_id: str,
        total: Optional[float],
        limits: Optional[Dict[str, float]] = None,
        alerts: Optional[List[Tuple[float, str]]] = None,
    ) -> None:
        if total is not None and total < 0:
            raise ValidationError(f"Budget total must be non-negative, got {total}", field="total")

        amount = math.inf if total is None else float(total)
        self._budgets[budget_id] = Budget(
            id=budget_id,
            total=amount,
            remaining=amount,
            limits=dict(limits or {}),
            alerts=list(alerts or DEFAULT_ALERTS),
            created=self._clock(),
        )
        self._fired_alerts = {key for key in self._fired_alerts if key[0] != budget_id}
        self._exceeded.discard(budget_id)
        logger.info(f"Budget set: {budget_id} = {amount}")

    async def get_remaining_budget(self, budget_id: str) -> float:
        budget = self._budgets.get(budget_id)
        return budget.remaining if budget else math.inf

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        return self._budgets.get(budget_id)

    def _charge(self, budget_id: str, cost: float) -> None:
        budget = self._budgets.get(budget_id)
        if budget is None:
            return

        budget.remaining -= cost
        percent_used = budget.percent_used

        for threshold, severity in budget.alerts:
            key = (budget_id, threshold)
            if percent_used >= threshold and key not in self._fired_alerts:
                self._fired_alerts.add(key)
                logger.warning(f"Budget {budget_id} has used {percent_used * 100:.1f}% of allocation")
                self.publish(BudgetEvent(
                    type=BudgetEventType.ALERT,
                    budget_id=budget_id,
                    severity=severity,
                    payload={
                        "percent_used": percent_used,
                        "remaining": budget.remaining,
                        "threshold": threshold,
                    },
                ))

        if budget.remaining <= 0 and budget_id not in self._exceeded:
            self._exceeded.add(budget_id)
            logger.warning(f"Budget {budget_id} exceeded by {abs(budget.remaining):.4f}")
            self.publish(BudgetEvent(
                type=BudgetEventType.EXCEEDED,
                budget_id=budget_id,
                severity="critical",
                payload={"overage": abs(budget.remaining)},
            ))

    # ---- usage ----

    def calculate_cost(self, metric: str, amount: float, tags: Optional[Dict[str, Any]] = None) -> float:
        """
        Price an amount of usage.

        Token usage is priced from `input`/`output` tags when present; otherwise
        the amount is split 30/70 between input and output.
        """
        tags = tags or {}

        if metric == "tokens":
            rates = self.token_costs.get(tags.get("model") or "claude-3-sonnet")
            if not rates:
                return 0.0
            input_tokens = tags.get("input", amount * 0.3)
            output_tokens = tags.get("output", amount * 0.7)
            return input_tokens / 1000 * rates["input"] + output_tokens / 1000 * rates["output"]

        if metric == "compute":
            return amount * self.compute_costs.get(tags.get("type") or "cpu-hour", 0.0)

        if metric == "api":
            return amount * self.api_costs.get(tags.get("type") or "api-call", 0.0)

        if metric == "storage":
            return amount * self.api_costs.get("storage-gb", 0.0)

        raise ValidationError(f"Unknown usage metric: {metric}", field="metric")

    async def track_usage(
        self,
        worker_id: str,
        metric: str,
        amount: float,
        tags: Optional[Dict[str, Any]] = None,
    ) -> float:
        tags = dict(tags or {})
        cost = self.calculate_cost(metric, amount, tags)

        totals = self._totals[metric]
        totals[worker_id] = totals.get(worker_id, 0.0) + amount

        self._history.append(UsageEntry(
            worker_id=worker_id,
            metric=metric,
            amount=amount,
            cost=cost,
            timestamp=self._clock(),
            tags=tags,
        ))

        budget_id = tags.get("budget_id")
        if budget_id:
            self._charge(budget_id, cost)

        return cost

    # ---- estimation ----

    def _similar_tasks(self, task: Task) -> Dict[str, Tuple[float, int]]:
        """Past task ids of the same type -> (total cost, complexity)."""
        similar: Dict[str, Tuple[float, int]] = {}
        for entry in self._history:
            task_id = entry.tags.get("task_id")
            if not task_id or entry.tags.get("task_type") != task.type:
                continue
            cost, complexity = similar.get(task_id, (0.0, entry.tags.get("task_complexity") or 5))
            similar[task_id] = (cost + entry.cost, complexity)
        return similar

    async def estimate_task_cost(self, task: Task, worker: Worker) -> Cost:
        complexity = task.complexity or 5
        similar = self._similar_tasks(task)

        if similar:
            avg_cost = sum(cost for cost, _ in similar.values()) / len(similar)
            avg_complexity = sum(c for _, c in similar.values()) / len(similar)
            total = avg_cost * (complexity / avg_complexity if avg_complexity else 1)

            breakdown: Dict[str, float] = {}
            for entry in self._history:
                if entry.tags.get("task_id") in similar:
                    breakdown[entry.metric] = breakdown.get(entry.metric, 0.0) + entry.cost / len(similar)
            return Cost(total=total, breakdown=breakdown, historical=True)

        model = worker.model or "claude-3-sonnet"
        estimated_tokens = complexity * 1000
        tokens = self.calculate_cost(
            "tokens", estimated_tokens,
            {"model": model, "input": estimated_tokens * 0.3, "output": estimated_tokens * 0.7},
        )
        compute = self.calculate_cost("compute", complexity * 0.01, {"type": "cpu-hour"})
        api = self.calculate_cost("api", complexity * 2)

        return Cost(
            total=tokens + compute + api,
            tokens=tokens,
            compute=compute,
            api=api,
            breakdown={"tokens": tokens, "compute": compute, "api": api},
        )

    async def find_cheaper_alternatives(self, worker: Worker, max_cost: float) -> List[Worker]:
        """
        Downgraded model variants of a worker, nearest first.

        `max_cost` is advisory; callers re-estimate each alternative.
        """
        return [
            Worker(
                kind=worker.kind,
                name=worker.name,
                score=worker.score,
                capabilities=worker.capabilities,
                model=model,
                speed_factor=worker.speed_factor,
            )
            for model in self.downgrades.get(worker.model or "", [])
        ]

    # ---- monitoring ----

    def _window_usage(self, metric: str, start: float, end: float) -> Tuple[float, float]:
        usage = 0.0
        cost = 0.0
        for entry in self._history:
            if entry.metric == metric and start <= entry.timestamp < end:
                usage += entry.amount
                cost += entry.cost
        return usage, cost

    def get_metrics(self) -> Dict[str, Any]:
        """Usage, cost and trend per metric over the last monitoring window."""
        now = self._clock()
        window_start = now - self.monitoring_interval
        previous_start = window_start - self.monitoring_interval

        metrics: Dict[str, Any] = {
            "timestamp": now,
            "window": self.monitoring_interval,
            "usage": {},
            "costs": {},
            "trends": {},
        }

        for metric in METRICS:
            usage, cost = self._window_usage(metric, window_start, math.inf)
            previous, _ = self._window_usage(metric, previous_start, window_start)
            metrics["usage"][metric] = usage
            metrics["costs"][metric] = cost
            metrics["trends"][metric] = (usage - previous) / previous if previous > 0 else 0.0

        metrics["total_cost"] = sum(metrics["costs"].values())
        return metrics

    def check_anomalies(self) -> List[Dict[str, Any]]:
        """
        Detect usage spikes and nearly exhausted budgets.

        Publishes a monitoring:anomalies event when anything is found.
        """
        metrics = self.get_metrics()
        anomalies: List[Dict[str, Any]] = []

        for metric, trend in metrics["trends"].items():
            if abs(trend) > 0.5:
                anomalies.append({
                    "type": "usage-spike",
                    "resource": metric,
                    "trend": trend,
                    "severity": "high" if abs(trend) > 1 else "medium",
                })

        for budget_id, budget in self._budgets.items():
            if not math.isinf(budget.total) and budget.remaining < budget.total * 0.1:
                anomalies.append({
                    "type": "budget-critical",
                    "budget_id": budget_id,
                    "remaining": budget.remaining,
                    "severity": "high",
                })

        if anomalies:
            logger.warning(f"Detected {len(anomalies)} resource anomalies")
            self.publish(BudgetEvent(
                type=BudgetEventType.ANOMALIES,
                severity="high" if any(a["severity"] == "high" for a in anomalies) else "medium",
                payload={"anomalies": anomalies, "metrics": metrics},
            ))

        return anomalies

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.monitoring_interval)
            self.check_anomalies()

    def start_monitoring(self) -> None:
        """Run anomaly checks every monitoring interval on the current loop."""
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(self._monitor_loop())
            logger.info(f"Cost monitoring started (interval={self.monitoring_interval}s)")

    async def stop_monitoring(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
            logger.info("Cost monitoring stopped")

    # ---- reporting ----

    def get_usage_report(self, hours: float = 24) -> Dict[str, Any]:
        """Usage and cost by worker and by resource over the last `hours`."""
        cutoff = self._clock() - hours * 3600
        report: Dict[str, Any] = {
            "hours": hours,
            "by_worker": {},
            "by_resource": {},
            "total_cost": 0.0,
            "top_consumers": [],
        }

        for entry in self._history:
            if entry.timestamp < cutoff:
                continue

            worker = report["by_worker"].setdefault(entry.worker_id, {"usage": {}, "cost": 0.0})
            worker["usage"][entry.metric] = worker["usage"].get(entry.metric, 0.0) + entry.amount
            worker["cost"] += entry.cost

            resource = report["by_resource"].setdefault(entry.metric, {"usage": 0.0, "cost": 0.0})
            resource["usage"] += entry.amount
            resource["cost"] += entry.cost

            report["total_cost"] += entry.cost

        report["top_consumers"] = sorted(
            ({"worker": key, "cost": data["cost"]} for key, data in report["by_worker"].items()),
            key=lambda item: item["cost"],
            reverse=True,
        )[:5]

        return report
