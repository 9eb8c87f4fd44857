"""
Task graph construction for pantheon-flow.
Decomposition, dependency analysis, agent selection, graph building,
optimization and leveling.
"""

from .types import (
    Dependency,
    DependencyKind,
    DependencySet,
    ExecutionGraph,
    ExecutionNode,
    Level,
    NodeStatus,
    Task,
    Worker,
    WILDCARD_CAPABILITY,
)
from .decomposer import Decomposer, DecompositionStrategy, Requirement
from .dependency_analyzer import DependencyAnalysis, DependencyAnalyzer
from .agent_selector import AgentSelector
from .builder import GraphBuilder
from .leveler import Leveler
from .optimizer import GraphOptimizer

__all__ = [
    # Types
    "Dependency",
    "DependencyKind",
    "DependencySet",
    "ExecutionGraph",
    "ExecutionNode",
    "Level",
    "NodeStatus",
    "Task",
    "Worker",
    "WILDCARD_CAPABILITY",
    # Decomposer
    "Decomposer",
    "DecompositionStrategy",
    "Requirement",
    # Analysis
    "DependencyAnalysis",
    "DependencyAnalyzer",
    # Selection
    "AgentSelector",
    # Graph
    "GraphBuilder",
    "Leveler",
    "GraphOptimizer",
]
