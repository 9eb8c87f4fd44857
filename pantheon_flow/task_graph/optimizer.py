"""
Objective-driven execution graph rewriting.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from ..config import EngineConfig
from ..errors import UnknownObjectiveError
from .leveler import Leveler
from .types import DependencyKind, ExecutionGraph, ExecutionNode, Worker

logger = logging.getLogger(__name__)

# Rewrites the graph in place, returns the number of changes made
ObjectiveFunc = Callable[[ExecutionGraph], int]


class GraphOptimizer:
    """
    Rewrites an execution graph under a list of objectives.

    Each objective runs on a copy of the input, in the order given, and the
    graph is validated after every pass. Passes only reassign workers or drop
    non-required implicit edges, and each one runs to a fixpoint, so running
    the same objective list twice changes nothing the second time.

    Example:
        optimizer = GraphOptimizer()
        optimized = optimizer.optimize(graph, ["minimize-handoffs", "optimize-speed"])
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        workers: Iterable[Worker] = (),
        leveler: Optional[Leveler] = None,
    ):
        """
        Initialize the optimizer.

        Args:
            config: Engine configuration (thresholds, built-in workers)
            workers: Extra workers that may receive reassigned tasks
            leveler: Leveler used for width and critical path queries
        """
        self.config = config or EngineConfig()
        self.extra_workers = list(workers)
        self.leveler = leveler or Leveler(self.config)
        self._objectives: Dict[str, ObjectiveFunc] = {
            "minimize-handoffs": self._minimize_handoffs,
            "maximize-parallelism": self._maximize_parallelism,
            "maximize-parallel": self._maximize_parallelism,
            "balance-workload": self._balance_workload,
            "optimize-speed": self._optimize_speed,
        }

    @property
    def objectives(self) -> List[str]:
        return list(self._objectives)

    def register_objective(self, name: str, objective: ObjectiveFunc) -> None:
        """Register a custom objective that rewrites a graph in place."""
        self._objectives[name] = objective

    def optimize(self, graph: ExecutionGraph, objectives: List[str]) -> ExecutionGraph:
        """
        Apply objectives in order.

        Args:
            graph: Graph to optimize (left untouched)
            objectives: Objective names

        Returns:
            Optimized copy of the graph

        Raises:
            UnknownObjectiveError: If an objective is not registered
            GraphInvalidError: If a pass broke the graph
        """
        for name in objectives:
            if name not in self._objectives:
                raise UnknownObjectiveError(name, self.objectives)

        optimized = graph.copy()
        for name in objectives:
            changes = self._objectives[name](optimized)
            optimized.recompute_endpoints()
            optimized.validate()
            logger.info(f"Objective '{name}' applied ({changes} change(s))")

        return optimized

    # ---- helpers ----

    def _worker_pool(self, graph: ExecutionGraph) -> List[Worker]:
        pool: List[Worker] = []
        seen = set()
        candidates = [node.worker for node in graph.nodes.values()]
        candidates += self.config.worker_pool()
        candidates += self.extra_workers
        for worker in candidates:
            if worker.key not in seen:
                seen.add(worker.key)
                pool.append(worker)
        return pool

    def _compatible(self, pool: List[Worker], node: ExecutionNode) -> List[Worker]:
        return [w for w in pool if w.can_handle(node.task, self.config.capability_match_ratio)]

    @staticmethod
    def _duration_on(node: ExecutionNode, worker: Worker) -> float:
        return node.task.estimated_duration_ms * worker.speed_factor

    def _width(self, graph: ExecutionGraph) -> int:
        return Leveler.max_parallelism(self.leveler.levelize(graph, include_optional=True))

    # ---- objectives ----

    def _find_chains(self, graph: ExecutionGraph) -> List[List[str]]:
        """Maximal chains joined by sole-out/sole-in required edges."""
        link: Dict[str, str] = {}
        for edge in graph.edges:
            if not edge.required:
                continue
            if (len(graph.outgoing(edge.source, required_only=True)) == 1
                    and len(graph.incoming(edge.target, required_only=True)) == 1):
                link[edge.source] = edge.target

        targets = set(link.values())
        chains = []
        for nid in graph.nodes:
            if nid in targets or nid not in link:
                continue
            chain = [nid]
            while chain[-1] in link:
                chain.append(link[chain[-1]])
            chains.append(chain)
        return chains

    def _minimize_handoffs(self, graph: ExecutionGraph) -> int:
        changes = 0
        for chain in self._find_chains(graph):
            counts: Dict[str, int] = {}
            workers: Dict[str, Worker] = {}
            for nid in chain:
                worker = graph.nodes[nid].worker
                counts[worker.key] = counts.get(worker.key, 0) + 1
                workers.setdefault(worker.key, worker)

            key = max(counts, key=lambda k: counts[k])
            if counts[key] / len(chain) <= self.config.handoff_dominance:
                continue

            dominant = workers[key]
            for nid in chain:
                node = graph.nodes[nid]
                if node.worker.key == key:
                    continue
                if dominant.can_handle(node.task, self.config.capability_match_ratio):
                    logger.debug(f"Handoff: {nid} {node.worker.key} -> {key}")
                    node.worker = dominant
                    changes += 1
        return changes

    def _maximize_parallelism(self, graph: ExecutionGraph) -> int:
        changes = 0
        changed = True
        while changed:
            changed = False
            width = self._width(graph)
            for edge in list(graph.edges):
                if edge.required or edge.kind != DependencyKind.IMPLICIT:
                    continue

                trial = [e for e in graph.edges if e is not edge]
                graph.edges, original = trial, graph.edges
                new_width = self._width(graph)
                if new_width > width:
                    logger.debug(f"Dropped implicit edge {edge.source} -> {edge.target}")
                    width = new_width
                    changes += 1
                    changed = True
                else:
                    graph.edges = original
        return changes

    def _balance_workload(self, graph: ExecutionGraph) -> int:
        pool = self._worker_pool(graph)
        changes = 0
        # each move lowers the sorted load vector, the cap only guards bad input
        max_rounds = max(len(graph.nodes) * len(pool), 1)

        for _ in range(max_rounds):
            load: Dict[str, float] = {w.key: 0.0 for w in pool}
            for node in graph.nodes.values():
                load[node.worker.key] += node.estimated_duration_ms

            assigned = {node.worker.key for node in graph.nodes.values()}
            if not assigned:
                return changes
            mean = sum(load[k] for k in assigned) / len(assigned)
            threshold = mean * self.config.overload_factor

            moved = False
            for worker_key in sorted(assigned, key=lambda k: -load[k]):
                if load[worker_key] <= threshold:
                    continue

                for node in graph.nodes.values():
                    if node.worker.key != worker_key or node.task.critical:
                        continue
                    if load[worker_key] <= threshold:
                        break

                    options = [w for w in self._compatible(pool, node) if w.key != worker_key]
                    if not options:
                        continue
                    target = min(options, key=lambda w: load[w.key])

                    current = node.estimated_duration_ms
                    moved_duration = self._duration_on(node, target)
                    if load[target.key] + moved_duration >= load[worker_key]:
                        continue

                    logger.debug(f"Rebalance: {node.id} {worker_key} -> {target.key}")
                    node.worker = target
                    load[worker_key] -= current
                    load[target.key] += moved_duration
                    changes += 1
                    moved = True

            if not moved:
                return changes

        logger.warning("Workload balancing stopped before reaching a stable assignment")
        return changes

    def _optimize_speed(self, graph: ExecutionGraph) -> int:
        pool = self._worker_pool(graph)
        changes = 0

        while True:
            moved = False
            for nid in self.leveler.critical_path(graph):
                node = graph.nodes[nid]
                best = node.worker
                best_duration = node.estimated_duration_ms
                for worker in self._compatible(pool, node):
                    duration = self._duration_on(node, worker)
                    if duration < best_duration:
                        best = worker
                        best_duration = duration

                if best.key != node.worker.key:
                    logger.debug(f"Speed: {nid} {node.worker.key} -> {best.key}")
                    node.worker = best
                    changes += 1
                    moved = True

            if not moved:
                return changes
