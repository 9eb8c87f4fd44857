"""
Budgeted Scheduler for executing execution graphs under a spend ceiling.
Handles admission control, concurrency limits and budget event reactions.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Deque, Dict, List, Optional, Set, Union

from ..config import EngineConfig, SchedulingPolicy
from ..errors import (
    CostOracleUnavailable,
    InsufficientBudget,
    PantheonFlowError,
    UnknownStrategyError,
    WorkerExecutionError,
)
from ..task_graph.leveler import Leveler
from ..task_graph.types import ExecutionGraph, Level, NodeStatus, Worker
from .cost_oracle import CostOracle
from .run_logger import RunLogger
from .types import (
    BudgetEvent,
    BudgetEventType,
    ExecutionResult,
    SchedulingStrategy,
    TaskExecution,
    WorkerExecutor,
    WorkerResult,
    utcnow,
)

logger = logging.getLogger(__name__)

# What to do when a task does not fit the budget
ADMIT_COST = "cost"  # substitute, else skip non-critical, else fail or run per policy
ADMIT_STRICT = "strict"  # substitute, else skip non-critical, else raise or skip per policy
ADMIT_ALWAYS = "always"  # dispatch regardless of budget


class _Run:
    """Mutable state of one run, owned by the scheduler coroutine driving it."""

    def __init__(
        self,
        graph: ExecutionGraph,
        result: ExecutionResult,
        policy: SchedulingPolicy,
        events: asyncio.Queue,
    ):
        self.graph = graph
        self.result = result
        self.policy = policy
        self.events = events
        self.order = {nid: index for index, nid in enumerate(graph.nodes)}
        self.workers: Dict[str, Worker] = {nid: node.worker for nid, node in graph.nodes.items()}
        self.estimates: Dict[str, float] = {}
        self.reserved = 0.0

        self.cost_reduction = False
        self.throttled = False
        self.aborted = False

        # guards the in-flight counters and the worker load map
        self.condition = asyncio.Condition()
        self.inflight = 0
        self.peak_inflight = 0
        self.kind_inflight: Dict[str, int] = {}
        self.worker_load: Dict[str, int] = {}

    @property
    def id(self) -> str:
        return self.result.execution_id

    def status(self, nid: str) -> NodeStatus:
        return self.graph.nodes[nid].status

    def set_status(self, nid: str, status: NodeStatus) -> None:
        self.graph.nodes[nid].status = status
        self.result.tasks[nid].status = status

    def is_critical(self, nid: str) -> bool:
        return self.graph.nodes[nid].task.critical

    def pending(self) -> List[str]:
        return [nid for nid, node in self.graph.nodes.items() if node.status == NodeStatus.PENDING]

    def concurrency_limit(self) -> int:
        limit = self.policy.max_concurrent_tasks
        if self.throttled:
            limit = max(1, limit // 2)
        return limit

    def _has_capacity(self, kind: str) -> bool:
        if self.inflight >= self.concurrency_limit():
            return False
        cap = self.policy.worker_concurrency.get(kind)
        return cap is None or self.kind_inflight.get(kind, 0) < cap

    @asynccontextmanager
    async def slot(self, worker: Worker):
        """Hold one concurrency slot (global and per worker kind)."""
        async with self.condition:
            await self.condition.wait_for(lambda: self._has_capacity(worker.kind))
            self.inflight += 1
            self.peak_inflight = max(self.peak_inflight, self.inflight)
            self.kind_inflight[worker.kind] = self.kind_inflight.get(worker.kind, 0) + 1
            self.worker_load[worker.key] = self.worker_load.get(worker.key, 0) + 1
        try:
            yield
        finally:
            async with self.condition:
                self.inflight -= 1
                self.kind_inflight[worker.kind] -= 1
                self.worker_load[worker.key] -= 1
                self.condition.notify_all()


class BudgetedScheduler:
    """
    Executes an execution graph under a budget.

    Features:
    - Four admission strategies (cost-optimized, performance-optimized,
      balanced, budget-strict)
    - Cheaper-worker substitution through the cost oracle
    - Budget events received on a run-owned queue between dispatches
    - Global and per-worker-kind concurrency caps
    - Usage reporting after every executed task

    Example:
        scheduler = BudgetedScheduler(oracle, execute_task=my_worker_call)
        result = await scheduler.run(
            graph, "wf-1", "balanced", config.get_policy("economy")
        )
        print(result.total_cost, result.count(NodeStatus.SUCCEEDED))
    """

    def __init__(
        self,
        oracle: CostOracle,
        execute_task: WorkerExecutor,
        config: Optional[EngineConfig] = None,
        run_logger: Optional[RunLogger] = None,
        leveler: Optional[Leveler] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            oracle: Cost oracle for estimates, budgets and usage
            execute_task: Async function performing one task on one worker
            config: Engine configuration (policies, importance, history size)
            run_logger: Structured decision log
            leveler: Leveler used by the performance-optimized strategy
        """
        self.oracle = oracle
        self.execute_task = execute_task
        self.config = config or EngineConfig()
        self.run_logger = run_logger or RunLogger()
        self.leveler = leveler or Leveler(self.config)

        self._active: Dict[str, ExecutionResult] = {}
        self._history: Deque[ExecutionResult] = deque(maxlen=self.config.execution_history_limit)

        self._strategies = {
            SchedulingStrategy.COST_OPTIMIZED: self._run_cost_optimized,
            SchedulingStrategy.PERFORMANCE_OPTIMIZED: self._run_performance_optimized,
            SchedulingStrategy.BALANCED: self._run_balanced,
            SchedulingStrategy.BUDGET_STRICT: self._run_budget_strict,
        }

    # ---- public API ----

    async def run(
        self,
        graph: ExecutionGraph,
        budget_id: str,
        strategy: Union[str, SchedulingStrategy] = SchedulingStrategy.BALANCED,
        policy: Optional[SchedulingPolicy] = None,
        levels: Optional[List[Level]] = None,
    ) -> ExecutionResult:
        """
        Execute a graph under a budget.

        Args:
            graph: Graph to execute; node statuses are reset and updated in place
            budget_id: Budget known to the cost oracle
            strategy: Admission strategy
            policy: Scheduling policy (defaults to the configured default)
            levels: Precomputed levels for performance-optimized

        Returns:
            ExecutionResult with a TaskExecution per node

        Raises:
            UnknownStrategyError: If the strategy does not exist
            InsufficientBudget: Under budget-strict when a critical task
                cannot be afforded and the policy forbids fallback
            CostOracleUnavailable: If the cost oracle fails
        """
        strategy = self._resolve_strategy(strategy)
        policy = policy or self.config.get_policy()
        graph.validate()

        for node in graph.nodes.values():
            node.status = NodeStatus.PENDING

        result = ExecutionResult(
            execution_id=f"exec-{uuid.uuid4().hex[:12]}",
            strategy=strategy,
            budget_id=budget_id,
            policy=policy.name,
            tasks={
                nid: TaskExecution(task_id=nid, worker=node.worker, critical=node.task.critical)
                for nid, node in graph.nodes.items()
            },
        )

        events: asyncio.Queue = asyncio.Queue()
        run = _Run(graph, result, policy, events)
        self._active[run.id] = result
        self.oracle.subscribe(events)

        self.run_logger.info(
            run.id,
            f"Starting run: {len(graph.nodes)} tasks, strategy={strategy.value}, "
            f"policy={policy.name}, budget={budget_id}",
            strategy=strategy.value, policy=policy.name, budget_id=budget_id,
        )

        try:
            await self._estimate_all(run)
            if strategy == SchedulingStrategy.PERFORMANCE_OPTIMIZED:
                await self._run_performance_optimized(run, levels)
            else:
                await self._strategies[strategy](run)
            self._drain_events(run)
        except PantheonFlowError as e:
            run.aborted = True
            result.aborted = True
            result.abort_reason = e.code
            result.errors.append(e.to_dict())
            self.run_logger.error(run.id, f"Run aborted: {e.message}", code=e.code)
            raise
        finally:
            self.oracle.unsubscribe(events)
            self._cancel_pending(run, "run-aborted" if run.aborted else "not-scheduled")
            result.end_time = utcnow()
            result.cost_reduction_mode = run.cost_reduction
            result.throttled = run.throttled
            result.peak_parallelism = run.peak_inflight
            self._active.pop(run.id, None)
            self._history.append(result)

        self.run_logger.info(
            run.id,
            f"Run finished: "
            f"{result.count(NodeStatus.SUCCEEDED)} succeeded, "
            f"{result.count(NodeStatus.FAILED)} failed, "
            f"{result.count(NodeStatus.SKIPPED)} skipped, "
            f"{result.count(NodeStatus.CANCELLED)} cancelled, "
            f"cost={result.total_cost:.4f}",
            total_cost=result.total_cost,
        )
        return result

    def get_execution_report(self, execution_id: str) -> Optional[Dict[str, Any]]:
        """
        Summarize an active or archived run.

        Returns:
            Report dict, or None for an unknown id
        """
        result = self._active.get(execution_id)
        if result is None:
            result = next((r for r in self._history if r.execution_id == execution_id), None)
        if result is None:
            return None

        end = result.end_time or utcnow()
        durations = [te.duration_ms for te in result.tasks.values() if te.duration_ms is not None]
        succeeded = result.count(NodeStatus.SUCCEEDED)

        return {
            "id": result.execution_id,
            "strategy": result.strategy.value,
            "policy": result.policy,
            "success": result.success,
            "duration_ms": (end - result.start_time).total_seconds() * 1000,
            "tasks": {
                "total": len(result.tasks),
                "succeeded": succeeded,
                "failed": result.count(NodeStatus.FAILED),
                "cancelled": result.count(NodeStatus.CANCELLED),
                "skipped": result.count(NodeStatus.SKIPPED),
            },
            "cost": {
                "estimated": result.estimated_cost,
                "actual": result.total_cost,
                "savings": result.estimated_cost - result.total_cost,
            },
            "performance": {
                "avg_task_time_ms": sum(durations) / len(durations) if durations else 0.0,
                "parallelism": result.peak_parallelism,
            },
        }

    def list_executions(self) -> List[str]:
        """Ids of active and archived runs, oldest first."""
        return [r.execution_id for r in self._history] + list(self._active)

    # ---- strategies ----

    async def _run_cost_optimized(self, run: _Run) -> None:
        while not run.aborted:
            ready = self._ready(run)
            if not ready:
                break

            ready.sort(key=lambda nid: (run.estimates[nid], run.order[nid]))
            await self._dispatch_sequence(run, ready, ADMIT_COST)

    async def _run_performance_optimized(self, run: _Run, levels: Optional[List[Level]] = None) -> None:
        levels = levels if levels is not None else self.leveler.levelize(run.graph)

        for index, level in enumerate(levels):
            if run.aborted:
                break

            ready = set(self._ready(run))
            batch = [nid for nid in level if nid in ready]
            logger.debug(f"Run {run.id}: level {index} with {len(batch)} runnable task(s)")

            position = 0
            while position < len(batch) and not run.aborted:
                limit = run.concurrency_limit()
                chunk = batch[position:position + limit]
                position += limit

                self._drain_events(run)
                chunk = [nid for nid in chunk if run.status(nid) == NodeStatus.PENDING]
                admitted = await self._admit_chunk(run, chunk)

                launched = []
                try:
                    for nid, reserved in admitted:
                        launched.append(asyncio.create_task(self._execute_node(run, nid, reserved)))
                finally:
                    await self._await_all(launched)

    async def _run_balanced(self, run: _Run) -> None:
        while not run.aborted:
            ready = self._ready(run)
            if not ready:
                break

            groups = {"critical": [], "standard": [], "optional": []}
            for nid in ready:
                groups[self._group_of(run, nid)].append(nid)

            if groups["critical"]:
                await self._dispatch_sequence(run, groups["critical"], ADMIT_ALWAYS)
                continue

            group = groups["standard"] or groups["optional"]
            group.sort(key=lambda nid: (-self._value_ratio(run, nid), run.order[nid]))
            await self._dispatch_sequence(run, group, ADMIT_COST)

    async def _run_budget_strict(self, run: _Run) -> None:
        total = sum(run.estimates.values())
        remaining = await self._oracle_call(
            "get_remaining_budget", self.oracle.get_remaining_budget(run.result.budget_id)
        )

        if total > remaining:
            self._select_within_budget(run, remaining)

        while not run.aborted:
            ready = self._ready(run)
            if not ready:
                break
            await self._dispatch_sequence(run, ready, ADMIT_STRICT)

    # ---- admission ----

    async def _dispatch_sequence(self, run: _Run, nids: List[str], mode: str) -> None:
        """Admit tasks one at a time, launching each as soon as it is admitted."""
        launched = []
        try:
            for nid in nids:
                self._drain_events(run)
                if run.aborted:
                    break
                if run.status(nid) != NodeStatus.PENDING:
                    continue

                if mode == ADMIT_STRICT:
                    remaining = await self._oracle_call(
                        "get_remaining_budget", self.oracle.get_remaining_budget(run.result.budget_id)
                    )
                    if remaining <= 0:
                        self._abort(run, "budget-exhausted")
                        break

                reserved = await self._admit(run, nid, mode)
                if reserved is not None:
                    launched.append(asyncio.create_task(self._execute_node(run, nid, reserved)))
        finally:
            await self._await_all(launched)

    async def _admit(self, run: _Run, nid: str, mode: str) -> Optional[float]:
        """
        Decide whether a task may be dispatched.

        Returns:
            The amount reserved for the task, or None if it was not admitted
        """
        if run.cost_reduction and run.policy.allow_downgrade:
            await self._substitute(run, nid, run.estimates[nid], strictly_cheaper=True)

        estimate = run.estimates[nid]
        if mode == ADMIT_ALWAYS:
            return self._reserve(run, estimate)

        available = await self._available(run)
        if estimate <= available:
            return self._reserve(run, estimate)

        if run.policy.allow_downgrade and await self._substitute(run, nid, available):
            return self._reserve(run, run.estimates[nid])

        if not run.is_critical(nid):
            self._skip(run, nid, "insufficient-budget", estimate=estimate, available=available)
            return None

        if mode == ADMIT_STRICT:
            if not run.policy.fallback_on_budget_exceed:
                raise InsufficientBudget(
                    f"Critical task {nid} needs {estimate:.4f} but only {available:.4f} is left",
                    budget_id=run.result.budget_id,
                    required=estimate,
                    remaining=available,
                    task_id=nid,
                )
            self._skip(run, nid, "insufficient-budget", abort=False, estimate=estimate, available=available)
            self._record_error(run, nid, "Critical task skipped: insufficient budget")
            return None

        if not run.policy.fallback_on_budget_exceed:
            error = InsufficientBudget(
                f"Insufficient budget for task {nid}",
                budget_id=run.result.budget_id,
                required=estimate,
                remaining=available,
                task_id=nid,
            )
            self._fail(run, nid, error.message, code=error.code)
            return None

        self.run_logger.decision(
            run.id, "run-over-budget", "critical task with fallback allowed", task_id=nid,
            estimate=estimate, available=available,
        )
        return self._reserve(run, estimate)

    async def _admit_chunk(self, run: _Run, chunk: List[str]) -> List[tuple]:
        """Shrink a batch until its estimate fits the remaining budget."""
        if not chunk:
            return []

        if run.cost_reduction and run.policy.allow_downgrade:
            for nid in chunk:
                await self._substitute(run, nid, run.estimates[nid], strictly_cheaper=True)

        available = await self._available(run)
        total = sum(run.estimates[nid] for nid in chunk)

        if total > available and run.policy.allow_downgrade:
            for nid in sorted(chunk, key=lambda n: (-run.estimates[n], run.order[n])):
                if total <= available:
                    break
                before = run.estimates[nid]
                if await self._substitute(run, nid, before, strictly_cheaper=True):
                    total -= before - run.estimates[nid]

        if total > available:
            droppable = sorted(
                (nid for nid in chunk if not run.is_critical(nid)),
                key=lambda n: (self._value_ratio(run, n), -run.order[n]),
            )
            for nid in droppable:
                if total <= available:
                    break
                total -= run.estimates[nid]
                self._skip(run, nid, "insufficient-budget", estimate=run.estimates[nid], available=available)

        if total > available and not run.policy.fallback_on_budget_exceed:
            for nid in chunk:
                if run.status(nid) == NodeStatus.PENDING and run.is_critical(nid):
                    self._fail(run, nid, f"Insufficient budget for task {nid}", code="INSUFFICIENT_BUDGET")
                    return []

        return [
            (nid, self._reserve(run, run.estimates[nid]))
            for nid in chunk
            if run.status(nid) == NodeStatus.PENDING
        ]

    def _select_within_budget(self, run: _Run, budget: float) -> None:
        """
        Cut the plan down to a dependency-closed subset that fits the budget.

        Critical tasks are considered first, then everything else by
        importance/cost ratio.
        """
        order = sorted(
            run.graph.nodes,
            key=lambda nid: (not run.is_critical(nid), -self._value_ratio(run, nid), run.order[nid]),
        )

        selected: Set[str] = set()
        spent = 0.0
        for nid in order:
            if nid in selected:
                continue
            closure = (self._required_ancestors(run.graph, nid) | {nid}) - selected
            cost = sum(run.estimates[x] for x in closure)
            if spent + cost <= budget:
                selected |= closure
                spent += cost

        cut = [nid for nid in run.graph.nodes if nid not in selected]
        for nid in cut:
            if run.is_critical(nid) and not run.policy.fallback_on_budget_exceed:
                raise InsufficientBudget(
                    f"Budget {budget:.4f} cannot cover critical task {nid}",
                    budget_id=run.result.budget_id,
                    required=run.estimates[nid],
                    remaining=budget - spent,
                    task_id=nid,
                )

        for nid in cut:
            self._skip(run, nid, "budget-cut", abort=False)
            if run.is_critical(nid):
                self._record_error(run, nid, "Critical task cut to fit the budget")

        self.run_logger.decision(
            run.id, "reduce-plan", f"kept {len(selected)} of {len(run.graph.nodes)} tasks",
            planned_cost=spent, budget=budget,
        )

    async def _substitute(
        self,
        run: _Run,
        nid: str,
        max_cost: float,
        strictly_cheaper: bool = False,
    ) -> bool:
        """Swap in the first cheaper worker whose estimate fits `max_cost`."""
        current = run.workers[nid]
        task = run.graph.nodes[nid].task
        alternatives = await self._oracle_call(
            "find_cheaper_alternatives", self.oracle.find_cheaper_alternatives(current, max_cost)
        )

        for alternative in alternatives:
            cost = await self._oracle_call(
                "estimate_task_cost", self.oracle.estimate_task_cost(task, alternative)
            )
            if cost.total > max_cost or (strictly_cheaper and cost.total >= run.estimates[nid]):
                continue

            te = run.result.tasks[nid]
            if te.substituted_from is None:
                te.substituted_from = current
            te.worker = alternative
            run.workers[nid] = alternative
            previous = run.estimates[nid]
            run.estimates[nid] = cost.total
            te.estimated_cost = cost.total

            self.run_logger.decision(
                run.id, "substitute", f"{current.model} -> {alternative.model}", task_id=nid,
                worker=alternative.key, previous_cost=previous, cost=cost.total,
            )
            return True

        return False

    # ---- execution ----

    async def _execute_node(self, run: _Run, nid: str, reserved: float) -> None:
        node = run.graph.nodes[nid]
        te = run.result.tasks[nid]
        worker = run.workers[nid]
        outcome: Optional[WorkerResult] = None
        error: Optional[str] = None

        try:
            async with run.slot(worker):
                self._drain_events(run)
                if run.status(nid) != NodeStatus.PENDING:
                    return

                run.set_status(nid, NodeStatus.RUNNING)
                te.start_time = utcnow()
                started = time.monotonic()

                try:
                    outcome = await self.execute_task(node.task, worker)
                    if not outcome.success:
                        error = outcome.error or "worker reported failure"
                except Exception as e:
                    error = WorkerExecutionError(nid, worker.key, str(e)).message

                elapsed_hours = (time.monotonic() - started) / 3600
                te.end_time = utcnow()

            try:
                te.actual_cost = await self._report_usage(run, nid, worker, outcome, elapsed_hours)
            except CostOracleUnavailable as e:
                te.error = e.message
                run.set_status(nid, NodeStatus.FAILED)
                raise
        finally:
            run.reserved -= reserved

        if error is None:
            te.success = True
            te.output = outcome.output if outcome else None
            run.set_status(nid, NodeStatus.SUCCEEDED)
            logger.debug(f"Task {nid} succeeded on {worker.key} (cost={te.actual_cost:.4f})")
        else:
            self._fail(run, nid, error, code="WORKER_EXECUTION_ERROR")

    async def _report_usage(
        self,
        run: _Run,
        nid: str,
        worker: Worker,
        outcome: Optional[WorkerResult],
        elapsed_hours: float,
    ) -> float:
        task = run.graph.nodes[nid].task
        tags = {
            "budget_id": run.result.budget_id,
            "execution_id": run.id,
            "task_id": nid,
            "task_type": task.type,
            "task_complexity": task.complexity,
            "model": worker.model,
        }
        cost = 0.0

        if outcome is not None and outcome.tokens:
            amount = sum(outcome.tokens.values())
            token_tags = dict(tags, **{k: v for k, v in outcome.tokens.items() if k in ("input", "output")})
            cost += await self._oracle_call(
                "track_usage", self.oracle.track_usage(worker.key, "tokens", amount, token_tags)
            )

        hours = outcome.compute_hours if outcome is not None and outcome.compute_hours is not None else elapsed_hours
        cost += await self._oracle_call(
            "track_usage", self.oracle.track_usage(worker.key, "compute", hours, dict(tags, type="cpu-hour"))
        )

        if outcome is not None and outcome.api_calls:
            cost += await self._oracle_call(
                "track_usage", self.oracle.track_usage(worker.key, "api", outcome.api_calls, tags)
            )

        return cost

    @staticmethod
    async def _await_all(launched: List[asyncio.Task]) -> None:
        """Wait for every launched task; re-raise the first fatal error."""
        if not launched:
            return
        results = await asyncio.gather(*launched, return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome

    # ---- events ----

    def _drain_events(self, run: _Run) -> None:
        while True:
            try:
                event: BudgetEvent = run.events.get_nowait()
            except asyncio.QueueEmpty:
                return

            if event.budget_id is not None and event.budget_id != run.result.budget_id:
                continue
            run.result.events.append(event)
            self._handle_event(run, event)

    def _handle_event(self, run: _Run, event: BudgetEvent) -> None:
        if event.type == BudgetEventType.ALERT:
            if not run.cost_reduction:
                run.cost_reduction = True
                self.run_logger.decision(
                    run.id, "cost-reduction", f"budget alert ({event.severity})", payload=event.payload
                )

        elif event.type == BudgetEventType.EXCEEDED:
            self.run_logger.warning(run.id, f"Budget {event.budget_id} exceeded", budget_id=event.budget_id)
            cancelled = self._cancel_pending(run, "budget-exceeded", non_critical_only=True)
            self.run_logger.decision(
                run.id, "cancel", f"budget exceeded, {len(cancelled)} pending task(s) cancelled",
                cancelled=cancelled,
            )

        elif event.type == BudgetEventType.ANOMALIES:
            anomalies = event.payload.get("anomalies", [])
            spike = any(
                a.get("type") == "usage-spike" and a.get("severity") == "high" for a in anomalies
            )
            if spike and not run.throttled:
                run.throttled = True
                self.run_logger.decision(
                    run.id, "throttle", f"usage spike, concurrency limited to {run.concurrency_limit()}"
                )

    # ---- status helpers ----

    def _ready(self, run: _Run) -> List[str]:
        """
        Pending tasks whose required predecessors all succeeded.

        Tasks behind a predecessor that ended any other way are skipped first.
        """
        self._drain_events(run)

        changed = True
        while changed and not run.aborted:
            changed = False
            for nid in run.pending():
                blocked = [
                    pred for pred in run.graph.predecessors(nid, required_only=True)
                    if run.status(pred).is_terminal and run.status(pred) != NodeStatus.SUCCEEDED
                ]
                if blocked:
                    self._skip(run, nid, "dependency-not-satisfied", blocked_by=blocked)
                    changed = True
                    if run.aborted:
                        break

        if run.aborted:
            return []

        return [
            nid for nid in run.pending()
            if all(
                run.status(pred) == NodeStatus.SUCCEEDED
                for pred in run.graph.predecessors(nid, required_only=True)
            )
        ]

    def _skip(self, run: _Run, nid: str, reason: str, abort: bool = True, **metadata) -> None:
        run.set_status(nid, NodeStatus.SKIPPED)
        run.result.tasks[nid].reason = reason
        self.run_logger.decision(run.id, "skip", reason, task_id=nid, **metadata)

        if abort and run.is_critical(nid):
            self._record_error(run, nid, f"Critical task could not run: {reason}")
            self._abort(run, f"critical task {nid} skipped ({reason})")

    def _fail(self, run: _Run, nid: str, error: str, code: str) -> None:
        te = run.result.tasks[nid]
        te.success = False
        te.error = error
        run.set_status(nid, NodeStatus.FAILED)
        self._record_error(run, nid, error, code=code)
        self.run_logger.error(run.id, error, task_id=nid, worker=te.worker.key)

        if run.is_critical(nid):
            self._abort(run, f"critical task {nid} failed")

    def _record_error(self, run: _Run, nid: str, message: str, code: str = "TASK_NOT_EXECUTED") -> None:
        run.result.errors.append({
            "task_id": nid,
            "worker": run.result.tasks[nid].worker.key,
            "critical": run.is_critical(nid),
            "code": code,
            "message": message,
        })

    def _abort(self, run: _Run, reason: str) -> None:
        if run.aborted:
            return
        run.aborted = True
        run.result.aborted = True
        run.result.abort_reason = reason
        cancelled = self._cancel_pending(run, "run-aborted")
        self.run_logger.decision(run.id, "abort", reason, cancelled=cancelled)

    def _cancel_pending(self, run: _Run, reason: str, non_critical_only: bool = False) -> List[str]:
        cancelled = []
        for nid in run.pending():
            if non_critical_only and run.is_critical(nid):
                continue
            run.set_status(nid, NodeStatus.CANCELLED)
            run.result.tasks[nid].reason = reason
            cancelled.append(nid)
        return cancelled

    # ---- cost helpers ----

    async def _oracle_call(self, operation: str, call: Awaitable) -> Any:
        try:
            return await call
        except PantheonFlowError:
            raise
        except Exception as e:
            logger.error(f"Cost oracle failed during {operation}: {e}")
            raise CostOracleUnavailable(operation, str(e)) from e

    async def _estimate_all(self, run: _Run) -> None:
        for nid, node in run.graph.nodes.items():
            cost = await self._oracle_call(
                "estimate_task_cost", self.oracle.estimate_task_cost(node.task, node.worker)
            )
            run.estimates[nid] = cost.total
            run.result.tasks[nid].estimated_cost = cost.total
        run.result.estimated_cost = sum(run.estimates.values())

    async def _available(self, run: _Run) -> float:
        remaining = await self._oracle_call(
            "get_remaining_budget", self.oracle.get_remaining_budget(run.result.budget_id)
        )
        return remaining - run.reserved

    @staticmethod
    def _reserve(run: _Run, amount: float) -> float:
        run.reserved += amount
        return amount

    def _importance(self, run: _Run, nid: str) -> float:
        task = run.graph.nodes[nid].task
        if task.importance is not None:
            return task.importance
        if task.critical:
            return self.config.critical_importance
        if task.optional:
            return self.config.optional_importance
        return self.config.standard_importance

    def _value_ratio(self, run: _Run, nid: str) -> float:
        return self._importance(run, nid) / (run.estimates[nid] or 0.001)

    @staticmethod
    def _group_of(run: _Run, nid: str) -> str:
        task = run.graph.nodes[nid].task
        if task.critical:
            return "critical"
        if task.optional:
            return "optional"
        return "standard"

    @staticmethod
    def _required_ancestors(graph: ExecutionGraph, nid: str) -> Set[str]:
        ancestors: Set[str] = set()
        stack = list(graph.predecessors(nid, required_only=True))
        while stack:
            current = stack.pop()
            if current in ancestors:
                continue
            ancestors.add(current)
            stack.extend(graph.predecessors(current, required_only=True))
        return ancestors

    def _resolve_strategy(self, strategy: Union[str, SchedulingStrategy]) -> SchedulingStrategy:
        try:
            return SchedulingStrategy(strategy)
        except ValueError:
            raise UnknownStrategyError(str(strategy), [s.value for s in SchedulingStrategy])
