"""
Errors - error handling module

Standardized exception hierarchy for workflow construction and scheduling.
"""

from .exceptions import (
    PantheonFlowError,
    DecompositionEmpty,
    CycleUnresolvable,
    GraphInvalidError,
    InsufficientBudget,
    WorkerExecutionError,
    CostOracleUnavailable,
    ValidationError,
    UnknownObjectiveError,
    UnknownStrategyError,
)

__all__ = [
    "PantheonFlowError",
    "DecompositionEmpty",
    "CycleUnresolvable",
    "GraphInvalidError",
    "InsufficientBudget",
    "WorkerExecutionError",
    "CostOracleUnavailable",
    "ValidationError",
    "UnknownObjectiveError",
    "UnknownStrategyError",
]
