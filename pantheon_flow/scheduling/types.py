"""
Scheduling data model.
Costs, budget events, worker results and execution records.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..task_graph.types import NodeStatus, Task, Worker


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulingStrategy(str, Enum):
    """Admission-control strategies of the budgeted scheduler."""
    COST_OPTIMIZED = "cost-optimized"
    PERFORMANCE_OPTIMIZED = "performance-optimized"
    BALANCED = "balanced"
    BUDGET_STRICT = "budget-strict"


class BudgetEventType(str, Enum):
    """Events a cost oracle pushes to subscribers."""
    ALERT = "budget:alert"
    EXCEEDED = "budget:exceeded"
    ANOMALIES = "monitoring:anomalies"


@dataclass
class Cost:
    """Estimated cost of one task on one worker."""
    total: float
    tokens: float = 0.0
    compute: float = 0.0
    api: float = 0.0
    breakdown: Dict[str, float] = field(default_factory=dict)
    historical: bool = False  # derived from similar past tasks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "tokens": self.tokens,
            "compute": self.compute,
            "api": self.api,
            "breakdown": dict(self.breakdown),
            "historical": self.historical,
        }


@dataclass
class WorkflowCostEstimate:
    """Estimated cost of a whole graph."""
    total: float
    tasks: Dict[str, Cost] = field(default_factory=dict)
    by_worker: Dict[str, float] = field(default_factory=dict)
    by_resource: Dict[str, float] = field(default_factory=dict)
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "tasks": {tid: cost.to_dict() for tid, cost in self.tasks.items()},
            "by_worker": dict(self.by_worker),
            "by_resource": dict(self.by_resource),
            "confidence": self.confidence,
        }


@dataclass
class BudgetEvent:
    """A budget or monitoring signal posted to a run's event queue."""
    type: BudgetEventType
    budget_id: Optional[str] = None
    severity: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "budget_id": self.budget_id,
            "severity": self.severity,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class WorkerResult:
    """
    What a worker reports after executing a task.

    Usage fields are optional; whichever are present get reported to the cost
    oracle.
    """
    success: bool = True
    output: Any = None
    error: Optional[str] = None
    tokens: Optional[Dict[str, float]] = None  # {"input": n, "output": n}
    api_calls: Optional[int] = None
    compute_hours: Optional[float] = None


# Performs the actual unit of work
WorkerExecutor = Callable[[Task, Worker], Awaitable[WorkerResult]]


@dataclass
class TaskExecution:
    """Run record of one node."""
    task_id: str
    worker: Worker
    status: NodeStatus = NodeStatus.PENDING
    critical: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    reason: Optional[str] = None  # why it was skipped or cancelled
    estimated_cost: Optional[float] = None
    actual_cost: float = 0.0
    substituted_from: Optional[Worker] = None
    output: Any = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds() * 1000
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "worker": self.worker.key,
            "status": self.status.value,
            "critical": self.critical,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "reason": self.reason,
            "estimated_cost": self.estimated_cost,
            "actual_cost": self.actual_cost,
            "substituted_from": self.substituted_from.key if self.substituted_from else None,
        }


@dataclass
class ExecutionResult:
    """Outcome of one budgeted run."""
    execution_id: str
    strategy: SchedulingStrategy
    budget_id: str
    policy: str
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    tasks: Dict[str, TaskExecution] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    events: List[BudgetEvent] = field(default_factory=list)
    estimated_cost: float = 0.0
    aborted: bool = False
    abort_reason: Optional[str] = None
    cost_reduction_mode: bool = False
    throttled: bool = False
    peak_parallelism: int = 0

    @property
    def success(self) -> bool:
        """True unless the run was aborted by a critical task."""
        return not self.aborted

    @property
    def total_cost(self) -> float:
        return sum(te.actual_cost for te in self.tasks.values())

    def count(self, status: NodeStatus) -> int:
        return sum(1 for te in self.tasks.values() if te.status == status)

    def ids_with_status(self, status: NodeStatus) -> List[str]:
        return [tid for tid, te in self.tasks.items() if te.status == status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "strategy": self.strategy.value,
            "budget_id": self.budget_id,
            "policy": self.policy,
            "success": self.success,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "tasks": {tid: te.to_dict() for tid, te in self.tasks.items()},
            "errors": list(self.errors),
            "events": [e.to_dict() for e in self.events],
            "estimated_cost": self.estimated_cost,
            "total_cost": self.total_cost,
            "cost_reduction_mode": self.cost_reduction_mode,
            "throttled": self.throttled,
            "peak_parallelism": self.peak_parallelism,
        }
