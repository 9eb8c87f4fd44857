"""
pantheon-flow: workflow construction and budget-constrained scheduling.

Turns a requirement into a dependency-ordered execution graph of worker
assignments, then runs it under a spend ceiling.
"""

from .config import EngineConfig, SchedulingPolicy, WorkerProfile
from .workflow import BuildContext, WorkflowBuild, WorkflowEngine

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "SchedulingPolicy",
    "WorkerProfile",
    "BuildContext",
    "WorkflowBuild",
    "WorkflowEngine",
]
