"""
Exceptions - custom exception classes

Standardized exceptions shared by workflow construction and scheduling.
"""

from typing import Optional, Dict, Any, List


class PantheonFlowError(Exception):
    """Base error for the workflow engine"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: error message
            code: error code
            details: additional details
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert the error into a dictionary"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class DecompositionEmpty(PantheonFlowError):
    """Raised when a requirement decomposes into zero tasks (non-fatal)"""

    def __init__(self, requirement_name: Optional[str] = None, strategy: Optional[str] = None):
        super().__init__(
            message=f"Requirement '{requirement_name or 'unnamed'}' produced no tasks",
            code="DECOMPOSITION_EMPTY",
            details={"requirement": requirement_name, "strategy": strategy}
        )


class CycleUnresolvable(PantheonFlowError):
    """Raised when cycle repair gives up before the dependency graph is acyclic"""

    def __init__(self, cycle: List[str], repairs: int):
        super().__init__(
            message=f"Dependency cycle could not be resolved after {repairs} repair(s): "
                    f"{' -> '.join(cycle)}",
            code="CYCLE_UNRESOLVABLE",
            details={"cycle": cycle, "repairs": repairs}
        )


class GraphInvalidError(PantheonFlowError):
    """Internal invariant violation in an execution graph"""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(
            message=message,
            code="GRAPH_INVALID",
            details={"node_id": node_id} if node_id else {}
        )


class InsufficientBudget(PantheonFlowError):
    """Raised when a task or workflow cannot be afforded and fallback is forbidden"""

    def __init__(
        self,
        message: str,
        budget_id: Optional[str] = None,
        required: Optional[float] = None,
        remaining: Optional[float] = None,
        task_id: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="INSUFFICIENT_BUDGET",
            details={
                "budget_id": budget_id,
                "required": required,
                "remaining": remaining,
                "task_id": task_id,
            }
        )


class WorkerExecutionError(PantheonFlowError):
    """A worker failed to execute a task"""

    def __init__(self, task_id: str, worker_key: str, reason: str):
        super().__init__(
            message=f"Worker '{worker_key}' failed task '{task_id}': {reason}",
            code="WORKER_EXECUTION_ERROR",
            details={"task_id": task_id, "worker": worker_key, "reason": reason}
        )


class CostOracleUnavailable(PantheonFlowError):
    """The cost oracle could not answer; scheduling cannot continue without it"""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            message=f"Cost oracle unavailable during '{operation}': {reason}",
            code="COST_ORACLE_UNAVAILABLE",
            details={"operation": operation, "reason": reason}
        )


class ValidationError(PantheonFlowError):
    """Raised when caller input fails validation"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else {}
        )


class UnknownObjectiveError(ValidationError):
    """Raised for an optimization objective nobody registered"""

    def __init__(self, objective: str, known: List[str]):
        super().__init__(
            message=f"Unknown optimization objective '{objective}' "
                    f"(known: {', '.join(known)})",
            field="objectives"
        )
        self.objective = objective


class UnknownStrategyError(ValidationError):
    """Raised for a scheduling or decomposition strategy that does not exist"""

    def __init__(self, strategy: str, known: List[str]):
        super().__init__(
            message=f"Unknown strategy '{strategy}' (known: {', '.join(known)})",
            field="strategy"
        )
        self.strategy = strategy
