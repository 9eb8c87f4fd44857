"""
Topological leveling and critical path estimation.
"""

import logging
from typing import Dict, List, Optional

from ..config import EngineConfig
from ..errors import GraphInvalidError
from .types import ExecutionGraph, Level

logger = logging.getLogger(__name__)


class Leveler:
    """
    Partitions a graph into parallel batches and finds its critical path.

    Example:
        leveler = Leveler()
        for index, level in enumerate(leveler.levelize(graph)):
            print(index, level)
        print(leveler.estimate_duration(graph))
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def levelize(self, graph: ExecutionGraph, include_optional: bool = False) -> List[Level]:
        """
        Kahn leveling: each level holds nodes whose predecessors are all in
        earlier levels.

        Args:
            graph: Graph to level
            include_optional: Also honor non-required edges

        Returns:
            Levels of task ids, sorted within each level

        Raises:
            GraphInvalidError: If some nodes can never be peeled (cycle)
        """
        in_degree: Dict[str, int] = {nid: 0 for nid in graph.nodes}
        successors: Dict[str, List[str]] = {nid: [] for nid in graph.nodes}

        for edge in graph.edges:
            if not (edge.required or include_optional):
                continue
            if edge.source not in in_degree or edge.target not in in_degree:
                raise GraphInvalidError(
                    f"Edge {edge.source} -> {edge.target} references a missing node"
                )
            in_degree[edge.target] += 1
            successors[edge.source].append(edge.target)

        levels: List[Level] = []
        current = sorted(nid for nid, degree in in_degree.items() if degree == 0)
        placed = 0

        while current:
            levels.append(current)
            placed += len(current)

            ready = []
            for nid in current:
                for succ in successors[nid]:
                    in_degree[succ] -= 1
                    if in_degree[succ] == 0:
                        ready.append(succ)
            current = sorted(ready)

        if placed != len(graph.nodes):
            stuck = sorted(nid for nid, degree in in_degree.items() if degree > 0)
            raise GraphInvalidError(
                f"Graph cannot be leveled, unresolved nodes: {', '.join(stuck)}",
                node_id=stuck[0] if stuck else None,
            )

        return levels

    def critical_path(self, graph: ExecutionGraph) -> List[str]:
        """
        Longest-duration path from a source to a sink, over all edges.

        Small graphs enumerate every path. Above the configured node threshold,
        or when the graph has more source-to-sink paths than
        `critical_path_max_paths`, a longest-path DP over a topological order
        is used instead.

        Returns:
            Task ids along the critical path
        """
        if not graph.nodes:
            return []

        if (
            len(graph.nodes) > self.config.critical_path_dp_threshold
            or self.count_paths(graph) > self.config.critical_path_max_paths
        ):
            return self._critical_path_dp(graph)
        return self._critical_path_exhaustive(graph)

    def count_paths(self, graph: ExecutionGraph) -> int:
        """Number of source-to-sink paths over all edges."""
        order = [nid for level in self.levelize(graph, include_optional=True) for nid in level]

        predecessors: Dict[str, List[str]] = {nid: [] for nid in graph.nodes}
        has_outgoing = set()
        for edge in graph.edges:
            predecessors[edge.target].append(edge.source)
            has_outgoing.add(edge.source)

        paths: Dict[str, int] = {}
        for nid in order:
            paths[nid] = sum(paths[pred] for pred in predecessors[nid]) or 1
        return sum(count for nid, count in paths.items() if nid not in has_outgoing)

    def _critical_path_exhaustive(self, graph: ExecutionGraph) -> List[str]:
        successors: Dict[str, List[str]] = {nid: [] for nid in graph.nodes}
        has_incoming = set()
        for edge in graph.edges:
            successors[edge.source].append(edge.target)
            has_incoming.add(edge.target)

        duration = {nid: node.estimated_duration_ms for nid, node in graph.nodes.items()}
        best_path: List[str] = []
        best_total = -1.0

        for start in graph.nodes:
            if start in has_incoming:
                continue

            stack = [(start, [start], duration[start])]
            while stack:
                nid, path, total = stack.pop()
                if not successors[nid]:
                    if total > best_total:
                        best_total = total
                        best_path = path
                    continue
                # reversed so successors are explored in edge order
                for succ in reversed(successors[nid]):
                    stack.append((succ, path + [succ], total + duration[succ]))

        return best_path

    def _critical_path_dp(self, graph: ExecutionGraph) -> List[str]:
        order = [nid for level in self.levelize(graph, include_optional=True) for nid in level]

        predecessors: Dict[str, List[str]] = {nid: [] for nid in graph.nodes}
        for edge in graph.edges:
            predecessors[edge.target].append(edge.source)

        distance: Dict[str, float] = {}
        previous: Dict[str, Optional[str]] = {}
        for nid in order:
            best_pred = None
            best = 0.0
            for pred in predecessors[nid]:
                if best_pred is None or distance[pred] > best:
                    best_pred = pred
                    best = distance[pred]
            distance[nid] = best + graph.nodes[nid].estimated_duration_ms
            previous[nid] = best_pred

        end = None
        for nid in order:
            if end is None or distance[nid] > distance[end]:
                end = nid

        path = []
        while end is not None:
            path.append(end)
            end = previous[end]
        path.reverse()
        return path

    def estimate_duration(self, graph: ExecutionGraph, path: Optional[List[str]] = None) -> float:
        """Sum of estimated durations along the critical path, in ms."""
        if path is None:
            path = self.critical_path(graph)
        return sum(graph.nodes[nid].estimated_duration_ms for nid in path)

    @staticmethod
    def max_parallelism(levels: List[Level]) -> int:
        """Width of the widest level."""
        return max((len(level) for level in levels), default=0)
