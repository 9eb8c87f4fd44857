"""
Execution graph builder.
Turns tasks, analyzed dependencies and worker assignments into a DAG.
"""

import logging
from typing import Dict, List, Tuple

from ..errors import GraphInvalidError
from .dependency_analyzer import DependencyAnalysis
from .types import Dependency, DependencyKind, ExecutionGraph, ExecutionNode, Task, Worker

logger = logging.getLogger(__name__)


class GraphBuilder:
    """
    Builds an ExecutionGraph.

    Explicit dependencies become required edges; optional and implicit ones
    become non-required edges. A pair linked more than once keeps a single
    edge, required if any of its sources was.

    Example:
        graph = GraphBuilder().build(tasks, analysis, assignments)
        print(graph.visualize_dot())
    """

    def build(
        self,
        tasks: List[Task],
        dependencies: DependencyAnalysis,
        assignments: Dict[str, Worker],
    ) -> ExecutionGraph:
        """
        Build the execution graph.

        Args:
            tasks: Tasks to place in the graph
            dependencies: Output of DependencyAnalyzer.analyze
            assignments: Output of AgentSelector.assign

        Returns:
            Validated ExecutionGraph

        Raises:
            GraphInvalidError: On a duplicate task, a missing assignment,
                a dangling edge or a cycle
        """
        nodes: Dict[str, ExecutionNode] = {}
        for task in tasks:
            if task.id in nodes:
                raise GraphInvalidError(f"Duplicate task id: {task.id}", node_id=task.id)
            worker = assignments.get(task.id)
            if worker is None:
                raise GraphInvalidError(f"Task {task.id} has no assigned worker", node_id=task.id)
            nodes[task.id] = ExecutionNode(task=task, worker=worker)

        edges: Dict[Tuple[str, str], Dependency] = {}

        def add_edge(source: str, target: str, kind: DependencyKind, required: bool) -> None:
            existing = edges.get((source, target))
            if existing is not None and (existing.required or not required):
                return
            edges[(source, target)] = Dependency(source, target, kind, required)

        for task in tasks:
            deps = dependencies.get(task.id)
            for dep_id in deps.explicit:
                add_edge(dep_id, task.id, DependencyKind.EXPLICIT, True)
            for dep_id in deps.optional:
                add_edge(dep_id, task.id, DependencyKind.EXPLICIT, False)
            for dep_id in deps.implicit:
                add_edge(dep_id, task.id, DependencyKind.IMPLICIT, False)

        graph = ExecutionGraph(
            nodes=nodes,
            edges=list(edges.values()),
            warnings=list(dependencies.warnings),
        )
        graph.validate()

        logger.info(
            f"Built execution graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges, "
            f"{len(graph.entry_points)} entry point(s)"
        )
        return graph
