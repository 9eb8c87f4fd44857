"""
Engine configuration.

Every tunable table the engine consults (built-in worker capabilities, keyword
tables, phase order, scoring weights, scheduling policies) lives here so it can
be overridden per instance or through the environment.
"""

import logging
import os
from typing import Dict, List, Optional, TYPE_CHECKING

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from .task_graph.types import Worker

logger = logging.getLogger(__name__)


class WorkerProfile(BaseModel):
    """Capability profile of a built-in worker."""
    name: str
    kind: str = "builtin"
    capabilities: List[str] = Field(default_factory=list)
    model: Optional[str] = "claude-3-sonnet"
    speed_factor: float = 1.0

    def to_worker(self, score: float = 0.0) -> "Worker":
        from .task_graph.types import Worker

        return Worker(
            kind=self.kind,
            name=self.name,
            score=score,
            capabilities=frozenset(self.capabilities),
            model=self.model,
            speed_factor=self.speed_factor,
        )


class SchedulingPolicy(BaseModel):
    """Resource allocation policy for one budgeted run."""
    name: str = "default"
    max_concurrent_tasks: int = Field(default=10, ge=1)
    max_cost_per_task: float = 1.0
    preferred_models: List[str] = Field(default_factory=list)
    fallback_on_budget_exceed: bool = True
    allow_downgrade: bool = True
    # worker kind -> max in-flight tasks for that kind
    worker_concurrency: Dict[str, int] = Field(default_factory=dict)

    @field_validator("worker_concurrency")
    @classmethod
    def validate_worker_concurrency(cls, value: Dict[str, int]) -> Dict[str, int]:
        for kind, cap in value.items():
            if cap < 1:
                raise ValueError(f"worker_concurrency[{kind!r}] must be >= 1, got {cap}")
        return value


def _default_workers() -> List[WorkerProfile]:
    return [
        WorkerProfile(
            name="zeus",
            capabilities=["orchestrate", "coordinate", "analyze", "delegate"],
            speed_factor=1.25,
        ),
        WorkerProfile(name="hephaestus", capabilities=["implement", "code", "build", "develop"]),
        WorkerProfile(name="apollo", capabilities=["design", "ui", "ux", "interface"]),
        WorkerProfile(name="themis", capabilities=["test", "validate", "verify", "qa"]),
        WorkerProfile(name="daedalus", capabilities=["architect", "design", "structure", "pattern"]),
        WorkerProfile(name="prometheus", capabilities=["plan", "strategize", "requirements", "product"]),
        WorkerProfile(name="athena", capabilities=["analyze", "decide", "prioritize", "manage"]),
    ]


def _default_policies() -> Dict[str, SchedulingPolicy]:
    return {
        "default": SchedulingPolicy(
            name="default",
            max_concurrent_tasks=10,
            max_cost_per_task=1.0,
            preferred_models=["claude-3-sonnet", "gpt-3.5-turbo"],
            fallback_on_budget_exceed=True,
            allow_downgrade=True,
        ),
        "premium": SchedulingPolicy(
            name="premium",
            max_concurrent_tasks=20,
            max_cost_per_task=5.0,
            preferred_models=["claude-3-opus", "gpt-4"],
            fallback_on_budget_exceed=False,
            allow_downgrade=False,
        ),
        "economy": SchedulingPolicy(
            name="economy",
            max_concurrent_tasks=5,
            max_cost_per_task=0.1,
            preferred_models=["claude-3-haiku", "gpt-3.5-turbo"],
            fallback_on_budget_exceed=True,
            allow_downgrade=True,
        ),
    }


class EngineConfig(BaseModel):
    """Tunables for workflow construction, optimization and scheduling."""

    # Agent selection
    builtin_workers: List[WorkerProfile] = Field(default_factory=_default_workers)
    default_worker_name: str = "zeus"
    keyword_match_score: float = 3.0
    type_match_score: float = 5.0
    external_discount: float = 0.8
    load_penalty: float = 0.1
    # fraction of a task's required capabilities a worker must cover
    capability_match_ratio: float = Field(default=1.0, ge=0.0, le=1.0)

    # Decomposition
    capability_keywords: Dict[str, List[str]] = Field(default_factory=lambda: {
        "implement": ["code", "build", "develop", "create"],
        "design": ["design", "architect", "plan", "structure"],
        "test": ["test", "validate", "verify", "check"],
        "analyze": ["analyze", "research", "investigate", "assess"],
        "coordinate": ["coordinate", "manage", "orchestrate", "organize"],
    })
    requirement_capability_keywords: Dict[str, List[str]] = Field(default_factory=lambda: {
        "analyze": ["analyze", "research", "investigate"],
        "design": ["design", "architect", "plan"],
        "implement": ["build", "create", "develop", "code"],
        "test": ["test", "validate", "verify"],
        "deploy": ["deploy", "release", "launch"],
    })
    domain_keywords: Dict[str, List[str]] = Field(default_factory=lambda: {
        "frontend": ["ui", "interface", "design", "user experience"],
        "backend": ["api", "server", "database", "service"],
        "infrastructure": ["deploy", "cloud", "devops", "infrastructure"],
        "data": ["data", "analytics", "ml", "ai"],
        "security": ["security", "auth", "encryption", "compliance"],
    })
    phase_order: List[str] = Field(default_factory=lambda: [
        "analysis", "design", "implementation", "testing", "deployment",
    ])
    capability_phases: Dict[str, str] = Field(default_factory=lambda: {
        "analyze": "analysis",
        "design": "design",
        "implement": "implementation",
        "test": "testing",
        "deploy": "deployment",
    })
    base_task_duration_ms: float = 30000.0

    # Dependency analysis
    max_cycle_repairs: int = Field(default=100, ge=0)

    # Optimization
    default_objectives: List[str] = Field(default_factory=lambda: [
        "minimize-handoffs", "maximize-parallelism",
    ])
    handoff_dominance: float = 0.6
    overload_factor: float = 1.5
    critical_path_dp_threshold: int = 500
    critical_path_max_paths: int = Field(default=10_000, ge=1)

    # Scheduling
    critical_importance: float = 10.0
    standard_importance: float = 5.0
    optional_importance: float = 2.0
    policies: Dict[str, SchedulingPolicy] = Field(default_factory=_default_policies)
    default_policy: str = "default"
    execution_history_limit: int = 100

    def worker_pool(self) -> List["Worker"]:
        """Built-in workers as assignable references."""
        return [profile.to_worker() for profile in self.builtin_workers]

    def default_worker(self) -> "Worker":
        """The orchestrator every unmatched task falls back to; handles anything."""
        from .task_graph.types import Worker, WILDCARD_CAPABILITY

        for profile in self.builtin_workers:
            if profile.name == self.default_worker_name:
                worker = profile.to_worker()
                break
        else:
            worker = Worker(kind="builtin", name=self.default_worker_name)
        return Worker(
            kind=worker.kind,
            name=worker.name,
            score=0.0,
            capabilities=worker.capabilities | {WILDCARD_CAPABILITY},
            model=worker.model,
            speed_factor=worker.speed_factor,
        )

    def get_policy(self, name: Optional[str] = None) -> SchedulingPolicy:
        """Look up a named scheduling policy, falling back to the default one."""
        name = name or self.default_policy
        if name not in self.policies:
            logger.warning(f"Unknown policy '{name}', using '{self.default_policy}'")
            name = self.default_policy
        return self.policies[name]

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "EngineConfig":
        """
        Build a config from PANTHEON_FLOW_* environment variables.

        Args:
            env_file: Optional .env path (defaults to python-dotenv's lookup)
            **overrides: Explicit field values, applied last

        Returns:
            EngineConfig
        """
        load_dotenv(env_file)

        values = {}
        env_fields = {
            "PANTHEON_FLOW_MAX_CYCLE_REPAIRS": ("max_cycle_repairs", int),
            "PANTHEON_FLOW_BASE_TASK_DURATION_MS": ("base_task_duration_ms", float),
            "PANTHEON_FLOW_LOAD_PENALTY": ("load_penalty", float),
            "PANTHEON_FLOW_EXTERNAL_DISCOUNT": ("external_discount", float),
            "PANTHEON_FLOW_CAPABILITY_MATCH_RATIO": ("capability_match_ratio", float),
            "PANTHEON_FLOW_CRITICAL_PATH_DP_THRESHOLD": ("critical_path_dp_threshold", int),
            "PANTHEON_FLOW_CRITICAL_PATH_MAX_PATHS": ("critical_path_max_paths", int),
            "PANTHEON_FLOW_DEFAULT_WORKER": ("default_worker_name", str),
            "PANTHEON_FLOW_DEFAULT_POLICY": ("default_policy", str),
        }
        for env_name, (field_name, cast) in env_fields.items():
            raw = os.getenv(env_name)
            if raw is not None:
                values[field_name] = cast(raw)

        values.update(overrides)
        return cls(**values)
