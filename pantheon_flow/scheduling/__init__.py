"""
Budget-constrained scheduling for pantheon-flow.
Provides the cost oracle interface, an in-memory oracle and the scheduler.
"""

from .types import (
    BudgetEvent,
    BudgetEventType,
    Cost,
    ExecutionResult,
    SchedulingStrategy,
    TaskExecution,
    WorkerExecutor,
    WorkerResult,
    WorkflowCostEstimate,
)
from .cost_oracle import Budget, CostOracle, InMemoryCostOracle
from .run_logger import LogLevel, RunLogEntry, RunLogger
from .budgeted_scheduler import BudgetedScheduler

__all__ = [
    # Types
    "BudgetEvent",
    "BudgetEventType",
    "Cost",
    "ExecutionResult",
    "SchedulingStrategy",
    "TaskExecution",
    "WorkerExecutor",
    "WorkerResult",
    "WorkflowCostEstimate",
    # Cost oracle
    "Budget",
    "CostOracle",
    "InMemoryCostOracle",
    # Logging
    "LogLevel",
    "RunLogEntry",
    "RunLogger",
    # Scheduler
    "BudgetedScheduler",
]
