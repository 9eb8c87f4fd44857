"""
Dependency analysis for decomposed tasks.
Collects explicit dependencies, infers phase ordering and repairs cycles.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import EngineConfig
from ..errors import CycleUnresolvable
from .types import Dependency, DependencyKind, DependencySet, Task

logger = logging.getLogger(__name__)


@dataclass
class DependencyAnalysis:
    """Result of dependency analysis."""
    dependencies: Dict[str, DependencySet]
    removed_edges: List[Dependency] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def get(self, task_id: str) -> DependencySet:
        return self.dependencies.get(task_id, DependencySet())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "dependencies": {
                tid: {
                    "explicit": list(deps.explicit),
                    "implicit": list(deps.implicit),
                    "optional": list(deps.optional),
                }
                for tid, deps in self.dependencies.items()
            },
            "removed_edges": [e.to_dict() for e in self.removed_edges],
            "warnings": list(self.warnings),
        }


class DependencyAnalyzer:
    """
    Builds per-task dependency sets and guarantees they are acyclic.

    Cycle repair drops one edge at a time, preferring the least committal one
    (implicit before optional before explicit), and gives up after
    `max_cycle_repairs` removals.

    Example:
        analyzer = DependencyAnalyzer()
        analysis = analyzer.analyze(tasks)
        for warning in analysis.warnings:
            print(warning)
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        """
        Initialize the analyzer.

        Args:
            config: Engine configuration (phase order, repair cap)
        """
        self.config = config or EngineConfig()

    def analyze(
        self,
        tasks: List[Task],
        phase_order: Optional[List[str]] = None,
    ) -> DependencyAnalysis:
        """
        Analyze task dependencies.

        Args:
            tasks: Tasks to analyze
            phase_order: Phase ordering to use instead of the configured one

        Returns:
            DependencyAnalysis with an acyclic dependency map

        Raises:
            CycleUnresolvable: If repairs run out before the graph is acyclic
        """
        dependencies: Dict[str, DependencySet] = {}
        for task in tasks:
            dependencies[task.id] = DependencySet(
                explicit=list(task.dependencies),
                optional=[d for d in task.optional_dependencies if d not in task.dependencies],
            )

        implicit = self._infer_implicit(tasks, phase_order)
        for task_id, dep_ids in implicit.items():
            deps = dependencies[task_id]
            deps.implicit = [
                d for d in dep_ids if d not in deps.explicit and d not in deps.optional
            ]

        analysis = DependencyAnalysis(dependencies=dependencies)
        self._resolve_cycles(tasks, analysis)

        logger.debug(
            f"Analyzed {len(tasks)} tasks "
            f"({len(analysis.removed_edges)} edge(s) removed to break cycles)"
        )
        return analysis

    def _ordered_phases(self, tasks: List[Task], phase_order: Optional[List[str]]) -> List[str]:
        order = list(phase_order or self.config.phase_order)
        for task in tasks:
            if task.phase and task.phase not in order:
                order.append(task.phase)

        present = {task.phase for task in tasks if task.phase}
        return [phase for phase in order if phase in present]

    def _infer_implicit(
        self,
        tasks: List[Task],
        phase_order: Optional[List[str]],
    ) -> Dict[str, List[str]]:
        """A task depends on every task of the immediately preceding phase."""
        phases = self._ordered_phases(tasks, phase_order)
        by_phase: Dict[str, List[str]] = {phase: [] for phase in phases}
        for task in tasks:
            if task.phase:
                by_phase[task.phase].append(task.id)

        implicit: Dict[str, List[str]] = {}
        for index, phase in enumerate(phases):
            if index == 0:
                continue
            previous = by_phase[phases[index - 1]]
            for task_id in by_phase[phase]:
                implicit[task_id] = [d for d in previous if d != task_id]
        return implicit

    @staticmethod
    def _find_back_edge(
        tasks: List[Task],
        dependencies: Dict[str, DependencySet],
    ) -> Optional[Tuple[str, str, List[str]]]:
        """
        Iterative DFS from each task along its dependencies, in task order.

        Returns:
            (task_id, dependency_id, cycle) for the first back edge found, or None
        """
        WHITE, GREY, BLACK = 0, 1, 2
        color = {task.id: WHITE for task in tasks}

        for task in tasks:
            if color[task.id] != WHITE:
                continue

            color[task.id] = GREY
            path = [task.id]
            stack = [iter(dependencies[task.id].all())]

            while stack:
                advanced = False
                for dep_id in stack[-1]:
                    if dep_id not in color:
                        continue
                    if color[dep_id] == GREY:
                        node_id = path[-1]
                        cycle = path[path.index(dep_id):] + [dep_id]
                        return node_id, dep_id, cycle
                    if color[dep_id] == WHITE:
                        color[dep_id] = GREY
                        path.append(dep_id)
                        stack.append(iter(dependencies[dep_id].all()))
                        advanced = True
                        break

                if not advanced:
                    color[path.pop()] = BLACK
                    stack.pop()

        return None

    def _resolve_cycles(self, tasks: List[Task], analysis: DependencyAnalysis) -> None:
        cap = self.config.max_cycle_repairs

        for attempt in range(cap + 1):
            found = self._find_back_edge(tasks, analysis.dependencies)
            if found is None:
                return

            task_id, dep_id, cycle = found
            if attempt == cap:
                logger.error(f"Cycle still present after {attempt} repair(s): {' -> '.join(cycle)}")
                raise CycleUnresolvable(cycle, attempt)

            deps = analysis.dependencies[task_id]
            for origin, bucket in (
                ("implicit", deps.implicit),
                ("optional", deps.optional),
                ("explicit", deps.explicit),
            ):
                if dep_id in bucket:
                    bucket.remove(dep_id)
                    break

            analysis.removed_edges.append(Dependency(
                source=dep_id,
                target=task_id,
                kind=DependencyKind.IMPLICIT if origin == "implicit" else DependencyKind.EXPLICIT,
                required=origin == "explicit",
            ))

            warning = (
                f"Removed {origin} dependency {dep_id} -> {task_id} to break cycle "
                f"{' -> '.join(cycle)}"
            )
            analysis.warnings.append(warning)
            logger.warning(warning)
