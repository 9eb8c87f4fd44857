"""
Execution graph data model.
Tasks, workers, dependencies and the DAG that binds them together.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from ..errors import GraphInvalidError

logger = logging.getLogger(__name__)

WILDCARD_CAPABILITY = "*"

# One batch of task ids that may run concurrently
Level = List[str]


class NodeStatus(str, Enum):
    """Status of an execution node."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (NodeStatus.PENDING, NodeStatus.RUNNING)


class DependencyKind(str, Enum):
    """Where a dependency came from."""
    EXPLICIT = "explicit"  # stated by the requirement
    IMPLICIT = "implicit"  # derived from phase ordering
    INFERRED = "inferred"  # derived by other heuristics


@dataclass
class Task:
    """
    A unit of work produced by decomposition.

    Only the bookkeeping fields (complexity, estimated_duration_ms) are touched
    after the task is placed in a graph.
    """
    id: str
    description: str
    type: str = "generic"
    domain: Optional[str] = None
    phase: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    optional_dependencies: List[str] = field(default_factory=list)
    required_capabilities: List[str] = field(default_factory=list)
    complexity: int = 1  # 0-10
    estimated_duration_ms: float = 30000.0
    critical: bool = False
    optional: bool = False
    importance: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "description": self.description,
            "type": self.type,
            "domain": self.domain,
            "phase": self.phase,
            "dependencies": list(self.dependencies),
            "optional_dependencies": list(self.optional_dependencies),
            "required_capabilities": list(self.required_capabilities),
            "complexity": self.complexity,
            "estimated_duration_ms": self.estimated_duration_ms,
            "critical": self.critical,
            "optional": self.optional,
            "importance": self.importance,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class Worker:
    """
    An assignable executor capability, referenced by kind and name.

    Workers are references: the engine never mutates one, it only records which
    tasks point at it. Score, capabilities and speed do not take part in
    equality.
    """
    kind: str
    name: str
    score: float = field(default=0.0, compare=False)
    capabilities: FrozenSet[str] = field(default_factory=frozenset, compare=False)
    model: Optional[str] = None
    speed_factor: float = field(default=1.0, compare=False)

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.name}"

    def with_score(self, score: float) -> "Worker":
        return replace(self, score=score)

    def can_handle(self, task: Task, match_ratio: float = 1.0) -> bool:
        """
        Check whether this worker covers the task's required capabilities.

        Args:
            task: Task to check
            match_ratio: Fraction of required capabilities that must be covered
                (1.0 means the required set must be a subset)

        Returns:
            True if the worker may take the task
        """
        if WILDCARD_CAPABILITY in self.capabilities:
            return True

        required = set(task.required_capabilities)
        if not required:
            return True

        covered = len(required & self.capabilities)
        if match_ratio >= 1.0:
            return covered == len(required)
        return covered / len(required) >= match_ratio

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "score": self.score,
            "capabilities": sorted(self.capabilities),
            "model": self.model,
            "speed_factor": self.speed_factor,
        }


@dataclass(frozen=True)
class Dependency:
    """Directed edge: `target` depends on `source`."""
    source: str
    target: str
    kind: DependencyKind = DependencyKind.EXPLICIT
    required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.source,
            "to": self.target,
            "kind": self.kind.value,
            "required": self.required,
        }


@dataclass
class DependencySet:
    """Dependencies of one task, split by origin."""
    explicit: List[str] = field(default_factory=list)
    implicit: List[str] = field(default_factory=list)
    optional: List[str] = field(default_factory=list)

    def all(self) -> List[str]:
        seen: List[str] = []
        for dep_id in self.explicit + self.optional + self.implicit:
            if dep_id not in seen:
                seen.append(dep_id)
        return seen


@dataclass
class ExecutionNode:
    """One task bound to its assigned worker, plus run status."""
    task: Task
    worker: Worker
    status: NodeStatus = NodeStatus.PENDING

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def estimated_duration_ms(self) -> float:
        """Task duration scaled by the assigned worker's speed."""
        return self.task.estimated_duration_ms * self.worker.speed_factor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task": self.task.to_dict(),
            "worker": self.worker.to_dict(),
            "status": self.status.value,
        }


class ExecutionGraph:
    """
    Directed acyclic graph of execution nodes.

    Edges point from a dependency to its dependent. Entry points have no
    incoming required edge; exit points have no outgoing edge at all.

    Example:
        graph = GraphBuilder().build(tasks, analysis, assignments)
        for node_id in graph.entry_points:
            print(graph.get_node(node_id).worker.key)
    """

    def __init__(
        self,
        nodes: Optional[Dict[str, ExecutionNode]] = None,
        edges: Optional[List[Dependency]] = None,
        warnings: Optional[List[str]] = None,
    ):
        self.nodes: Dict[str, ExecutionNode] = dict(nodes or {})
        self.edges: List[Dependency] = list(edges or [])
        self.warnings: List[str] = list(warnings or [])
        self.entry_points: List[str] = []
        self.exit_points: List[str] = []
        self.recompute_endpoints()

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self.nodes

    def get_node(self, task_id: str) -> Optional[ExecutionNode]:
        """Get a node by task id."""
        return self.nodes.get(task_id)

    def incoming(self, task_id: str, required_only: bool = False) -> List[Dependency]:
        return [
            e for e in self.edges
            if e.target == task_id and (e.required or not required_only)
        ]

    def outgoing(self, task_id: str, required_only: bool = False) -> List[Dependency]:
        return [
            e for e in self.edges
            if e.source == task_id and (e.required or not required_only)
        ]

    def predecessors(self, task_id: str, required_only: bool = False) -> List[str]:
        return [e.source for e in self.incoming(task_id, required_only)]

    def successors(self, task_id: str, required_only: bool = False) -> List[str]:
        return [e.target for e in self.outgoing(task_id, required_only)]

    def recompute_endpoints(self) -> None:
        """Refresh entry and exit points after edges change."""
        has_required_incoming: Set[str] = {e.target for e in self.edges if e.required}
        has_outgoing: Set[str] = {e.source for e in self.edges}

        self.entry_points = [nid for nid in self.nodes if nid not in has_required_incoming]
        self.exit_points = [nid for nid in self.nodes if nid not in has_outgoing]

    def copy(self) -> "ExecutionGraph":
        """
        Copy nodes and edges so a rewrite never touches the original.

        Tasks and workers are shared; both are treated as read-only.
        """
        nodes = {
            nid: ExecutionNode(task=node.task, worker=node.worker, status=node.status)
            for nid, node in self.nodes.items()
        }
        return ExecutionGraph(nodes=nodes, edges=list(self.edges), warnings=list(self.warnings))

    def assignments(self) -> Dict[str, Worker]:
        return {nid: node.worker for nid, node in self.nodes.items()}

    def find_cycle(self, edges: Optional[Iterable[Dependency]] = None) -> Optional[List[str]]:
        """
        Find one cycle, if any.

        Returns:
            Node ids along the cycle (first id repeated at the end), or None
        """
        adjacency: Dict[str, List[str]] = {nid: [] for nid in self.nodes}
        for edge in (self.edges if edges is None else edges):
            if edge.source in adjacency:
                adjacency[edge.source].append(edge.target)

        WHITE, GREY, BLACK = 0, 1, 2
        color = {nid: WHITE for nid in adjacency}

        for start in adjacency:
            if color[start] != WHITE:
                continue

            path = [start]
            stack = [iter(adjacency[start])]
            color[start] = GREY

            while stack:
                advanced = False
                for neighbor in stack[-1]:
                    if neighbor not in color:
                        continue
                    if color[neighbor] == GREY:
                        return path[path.index(neighbor):] + [neighbor]
                    if color[neighbor] == WHITE:
                        color[neighbor] = GREY
                        path.append(neighbor)
                        stack.append(iter(adjacency[neighbor]))
                        advanced = True
                        break

                if not advanced:
                    color[path.pop()] = BLACK
                    stack.pop()

        return None

    def validate(self) -> None:
        """
        Check structural invariants.

        Raises:
            GraphInvalidError: On a dangling edge or a cycle
        """
        for edge in self.edges:
            if edge.source not in self.nodes:
                raise GraphInvalidError(
                    f"Edge references non-existent node: {edge.source}", node_id=edge.source
                )
            if edge.target not in self.nodes:
                raise GraphInvalidError(
                    f"Edge references non-existent node: {edge.target}", node_id=edge.target
                )

        cycle = self.find_cycle()
        if cycle:
            raise GraphInvalidError(
                f"Execution graph contains a cycle: {' -> '.join(cycle)}", node_id=cycle[0]
            )

        if len(self.nodes) > 1:
            connected = {e.source for e in self.edges} | {e.target for e in self.edges}
            for nid in self.nodes:
                if nid not in connected:
                    logger.debug(f"Node {nid} is not connected to the graph")

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in NodeStatus}
        for node in self.nodes.values():
            counts[node.status.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert graph to dictionary."""
        return {
            "nodes": {nid: node.to_dict() for nid, node in self.nodes.items()},
            "edges": [e.to_dict() for e in self.edges],
            "entry_points": list(self.entry_points),
            "exit_points": list(self.exit_points),
            "warnings": list(self.warnings),
            "status_counts": self.status_counts(),
        }

    def visualize_dot(self) -> str:
        """
        Generate DOT format for visualization with Graphviz.

        Returns:
            DOT format string
        """
        lines = ["digraph ExecutionGraph {"]
        lines.append("  rankdir=TB;")
        lines.append("  node [shape=box];")

        for node in self.nodes.values():
            color = {
                NodeStatus.PENDING: "lightgray",
                NodeStatus.RUNNING: "lightblue",
                NodeStatus.SUCCEEDED: "lightgreen",
                NodeStatus.FAILED: "red",
                NodeStatus.SKIPPED: "orange",
                NodeStatus.CANCELLED: "gray",
            }.get(node.status, "white")

            label = f"{node.id}\\n{node.worker.key}\\n({node.status.value})"
            lines.append(f'  "{node.id}" [label="{label}", fillcolor="{color}", style=filled];')

        for edge in self.edges:
            style = "solid" if edge.required else "dashed"
            lines.append(f'  "{edge.source}" -> "{edge.target}" [style={style}];')

        lines.append("}")
        return "\n".join(lines)
