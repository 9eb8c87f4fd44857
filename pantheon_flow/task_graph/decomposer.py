"""
Requirement decomposer for breaking a requirement down into tasks.
Picks a named strategy by inspecting the requirement's shape.
"""

import itertools
import logging
import math
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..config import EngineConfig
from ..errors import DecompositionEmpty, UnknownStrategyError
from .types import Task

logger = logging.getLogger(__name__)


class DecompositionStrategy(str, Enum):
    """Built-in decomposition strategies."""
    DOMAIN = "domain"  # One design/implement pair per domain
    PHASE = "phase"  # One task per lifecycle phase, chained
    CAPABILITY = "capability"  # One task per capability mentioned
    GOAL = "goal"  # Goals expanded into chained sub-goals


class Requirement(BaseModel):
    """A high-level requirement to turn into a workflow."""
    name: str = "requirement"
    description: str = ""
    domains: Optional[List[str]] = None
    phases: Optional[List[str]] = None
    goals: Optional[List[str]] = None
    workflow: Optional[str] = None
    critical_task_types: List[str] = Field(default_factory=list)
    optional_task_types: List[str] = Field(default_factory=list)

    def text(self) -> str:
        """Lowercased text used for keyword matching."""
        parts = [self.name, self.description]
        parts.extend(self.domains or [])
        parts.extend(self.phases or [])
        parts.extend(self.goals or [])
        return " ".join(p for p in parts if p).lower()


# Hands out the next unique task id
IdFactory = Callable[[], str]

# (requirement, next_id) -> tasks
StrategyFunc = Callable[[Requirement, IdFactory], List[Task]]


_PHASE_TEMPLATES: Dict[str, Dict] = {
    "analysis": {
        "type": "analyze",
        "description": "Analyze requirements and constraints",
        "required_capabilities": ["analyze"],
    },
    "design": {
        "type": "design",
        "description": "Create system design and architecture",
        "required_capabilities": ["design", "architect"],
    },
    "implementation": {
        "type": "implement",
        "description": "Implement system components",
        "required_capabilities": ["code", "build"],
    },
    "testing": {
        "type": "test",
        "description": "Test and validate implementation",
        "required_capabilities": ["test", "validate"],
    },
    "deployment": {
        "type": "deploy",
        "description": "Deploy system to production",
        "required_capabilities": ["deploy"],
    },
}

_DOMAIN_DESIGN_DESCRIPTIONS = {
    "frontend": "Design user interface",
    "backend": "Design API architecture",
}

_DOMAIN_IMPLEMENT_DESCRIPTIONS = {
    "frontend": "Implement UI components",
    "backend": "Implement API endpoints",
}


class Decomposer:
    """
    Decomposes requirements into raw tasks.

    Strategies are pure functions of the requirement. Extra strategies (for
    instance one backed by a language model) can be registered by name and
    forced per call.

    Example:
        decomposer = Decomposer()
        tasks = decomposer.decompose(Requirement(
            name="shop",
            description="Build an online shop",
            domains=["frontend", "backend"],
        ))
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        """
        Initialize the decomposer.

        Args:
            config: Engine configuration (keyword tables, phase order, durations)
        """
        self.config = config or EngineConfig()
        self._strategies: Dict[str, StrategyFunc] = {
            DecompositionStrategy.DOMAIN.value: self._decompose_by_domain,
            DecompositionStrategy.PHASE.value: self._decompose_by_phase,
            DecompositionStrategy.CAPABILITY.value: self._decompose_by_capability,
            DecompositionStrategy.GOAL.value: self._decompose_by_goal,
        }

    @property
    def strategies(self) -> List[str]:
        return list(self._strategies)

    def register_strategy(self, name: str, strategy: StrategyFunc) -> None:
        """
        Register (or replace) a named decomposition strategy.

        Args:
            name: Strategy name used to force it
            strategy: Callable taking (requirement, next_id) and returning tasks
        """
        self._strategies[name] = strategy
        logger.info(f"Registered decomposition strategy: {name}")

    def select_strategy(self, requirement: Requirement) -> str:
        """Pick a strategy from the requirement's shape."""
        if requirement.domains:
            return DecompositionStrategy.DOMAIN.value
        if requirement.phases or requirement.workflow == "phased":
            return DecompositionStrategy.PHASE.value
        if requirement.goals:
            return DecompositionStrategy.GOAL.value
        return DecompositionStrategy.CAPABILITY.value

    def decompose(
        self,
        requirement: Requirement,
        strategy: Optional[Union[str, DecompositionStrategy]] = None,
        strict: bool = False,
    ) -> List[Task]:
        """
        Decompose a requirement into tasks.

        Args:
            requirement: The requirement to decompose
            strategy: Force a strategy instead of selecting one
            strict: Raise DecompositionEmpty instead of returning no tasks

        Returns:
            Enriched tasks with unique ids

        Raises:
            UnknownStrategyError: If the forced strategy is not registered
            DecompositionEmpty: If strict and nothing was produced
        """
        if isinstance(strategy, DecompositionStrategy):
            strategy = strategy.value
        name = strategy or self.select_strategy(requirement)

        if name not in self._strategies:
            raise UnknownStrategyError(name, self.strategies)

        counter = itertools.count()

        def next_id() -> str:
            return f"task-{next(counter)}"

        tasks = self._strategies[name](requirement, next_id)

        seen = set()
        for task in tasks:
            if not task.id or task.id in seen:
                task.id = next_id()
            seen.add(task.id)

        tasks = [self._enrich(task, requirement) for task in tasks]

        logger.info(f"Decomposed '{requirement.name}' into {len(tasks)} tasks (strategy={name})")

        if not tasks and strict:
            raise DecompositionEmpty(requirement.name, name)

        return tasks

    # ---- strategies ----

    def _decompose_by_domain(self, requirement: Requirement, next_id: IdFactory) -> List[Task]:
        tasks = []
        for domain in requirement.domains or self.identify_domains(requirement):
            if domain in _DOMAIN_DESIGN_DESCRIPTIONS:
                first = Task(
                    id=next_id(),
                    type="design",
                    phase="design",
                    description=_DOMAIN_DESIGN_DESCRIPTIONS[domain],
                    domain=domain,
                )
                implement_description = _DOMAIN_IMPLEMENT_DESCRIPTIONS[domain]
            else:
                first = Task(
                    id=next_id(),
                    type="analyze",
                    phase="analysis",
                    description=f"Analyze {domain} requirements",
                    domain=domain,
                )
                implement_description = f"Implement {domain} solution"

            implement = Task(
                id=next_id(),
                type="implement",
                phase="implementation",
                description=implement_description,
                domain=domain,
                dependencies=[first.id],
            )
            tasks.extend([first, implement])
        return tasks

    def _decompose_by_phase(self, requirement: Requirement, next_id: IdFactory) -> List[Task]:
        phases = requirement.phases or list(self.config.phase_order)
        tasks: List[Task] = []
        previous: List[str] = []

        for phase in phases:
            template = _PHASE_TEMPLATES.get(phase)
            if template:
                task = Task(
                    id=next_id(),
                    type=template["type"],
                    phase=phase,
                    description=template["description"],
                    required_capabilities=list(template["required_capabilities"]),
                )
            else:
                task = Task(
                    id=next_id(),
                    type="generic",
                    phase=phase,
                    description=f"Complete {phase} phase for: {requirement.description}",
                )
            task.dependencies = list(previous)
            tasks.append(task)
            previous = [task.id]

        return tasks

    def _decompose_by_capability(self, requirement: Requirement, next_id: IdFactory) -> List[Task]:
        capabilities = self.analyze_required_capabilities(requirement)
        tasks = [
            Task(
                id=next_id(),
                type=capability,
                phase=self.config.capability_phases.get(capability),
                description=f"Execute {capability} tasks for: {requirement.description}",
                required_capabilities=[capability],
            )
            for capability in capabilities
        ]

        if len(capabilities) > 2:
            tasks.append(Task(
                id=next_id(),
                type="coordinate",
                description="Coordinate between different capability domains",
                required_capabilities=["coordinate", "orchestrate"],
                metadata={"coordination": True, "capability_count": len(capabilities)},
            ))

        return tasks

    def _decompose_by_goal(self, requirement: Requirement, next_id: IdFactory) -> List[Task]:
        goals = requirement.goals or [requirement.description]
        tasks = []
        for goal in goals:
            previous: Optional[str] = None
            for subgoal in self.decompose_goal(goal):
                task = Task(
                    id=next_id(),
                    type="goal",
                    description=subgoal,
                    dependencies=[previous] if previous else [],
                    metadata={"goal": goal},
                )
                tasks.append(task)
                previous = task.id
        return tasks

    # ---- helpers ----

    @staticmethod
    def decompose_goal(goal: str) -> List[str]:
        """Split a goal into sub-goals; build/create goals get a full cycle."""
        lowered = goal.lower()
        if "build" in lowered or "create" in lowered:
            return [
                f"Understand requirements for: {goal}",
                f"Design solution for: {goal}",
                f"Implement: {goal}",
                f"Test: {goal}",
            ]
        return [goal]

    def identify_domains(self, requirement: Requirement) -> List[str]:
        text = requirement.text()
        return [
            domain for domain, words in self.config.domain_keywords.items()
            if any(word in text for word in words)
        ]

    def analyze_required_capabilities(self, requirement: Requirement) -> List[str]:
        text = requirement.text()
        return [
            capability for capability, words in self.config.requirement_capability_keywords.items()
            if any(word in text for word in words)
        ]

    def identify_required_capabilities(self, task: Task) -> List[str]:
        text = f"{task.description} {task.type}".lower()
        return [
            capability for capability, words in self.config.capability_keywords.items()
            if any(word in text for word in words)
        ]

    @staticmethod
    def assess_complexity(task: Task) -> int:
        complexity = 1.0
        complexity += len(task.required_capabilities) * 0.5
        complexity += len(task.dependencies) * 0.3
        if task.metadata.get("coordination"):
            complexity += 2
        # half-up, not banker's rounding
        return min(int(math.floor(complexity + 0.5)), 10)

    def _enrich(self, task: Task, requirement: Requirement) -> Task:
        if not task.required_capabilities:
            task.required_capabilities = self.identify_required_capabilities(task)

        task.complexity = self.assess_complexity(task)
        task.estimated_duration_ms = self.config.base_task_duration_ms * max(task.complexity, 1)

        if task.type in requirement.critical_task_types:
            task.critical = True
        if task.type in requirement.optional_task_types:
            task.optional = True

        return task
