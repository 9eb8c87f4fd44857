"""
Agent selection for decomposed tasks.
Scores built-in and external workers per task and balances load.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..config import EngineConfig
from .types import Task, Worker

logger = logging.getLogger(__name__)

# Recommends external workers for a task; each carries its own score
Recommender = Callable[[Task], Sequence[Worker]]


class AgentSelector:
    """
    Assigns one worker to every task.

    Built-ins are scored on keyword and type overlap with the task. External
    workers are scored the same way (or keep a recommender's score) and then
    discounted so native specialists win ties of merit. A per-call load counter
    penalizes workers that already hold tasks.

    Example:
        selector = AgentSelector()
        assignments = selector.assign(tasks)
        print(assignments["task-0"].key)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        recommender: Optional[Recommender] = None,
    ):
        """
        Initialize the selector.

        Args:
            config: Engine configuration (built-in workers, score weights)
            recommender: Optional source of external worker recommendations
        """
        self.config = config or EngineConfig()
        self.recommender = recommender

    def score_worker(self, worker: Worker, task: Task) -> float:
        """Raw keyword/type score of a worker for a task."""
        description = task.description.lower()
        required = set(task.required_capabilities)

        score = 0.0
        for capability in sorted(worker.capabilities):
            if capability in description or capability in required:
                score += self.config.keyword_match_score

        if task.type and task.type in worker.capabilities:
            score += self.config.type_match_score

        return score

    def find_candidates(self, task: Task, workers: Iterable[Worker] = ()) -> List[Worker]:
        """
        Score every known worker for a task.

        Returns:
            Workers with a positive score, highest first (stable)
        """
        candidates: List[Worker] = []

        for worker in self.config.worker_pool():
            score = self.score_worker(worker, task)
            if score > 0:
                candidates.append(worker.with_score(score))

        for worker in workers:
            score = self.score_worker(worker, task) * self.config.external_discount
            if score > 0:
                candidates.append(worker.with_score(score))

        if self.recommender is not None:
            for worker in self.recommender(task):
                score = worker.score * self.config.external_discount
                if score > 0:
                    candidates.append(worker.with_score(score))

        return sorted(candidates, key=lambda w: w.score, reverse=True)

    def assign(self, tasks: List[Task], workers: Iterable[Worker] = ()) -> Dict[str, Worker]:
        """
        Assign a worker to each task.

        Args:
            tasks: Tasks to assign, in order
            workers: Extra external workers to consider

        Returns:
            Mapping of task id to assigned worker
        """
        external = list(workers)
        assignments: Dict[str, Worker] = {}
        load: Dict[str, int] = {}

        for task in tasks:
            candidates = self.find_candidates(task, external)

            if not candidates:
                chosen = self.config.default_worker()
                logger.debug(f"No candidate for {task.id}, falling back to {chosen.key}")
            else:
                chosen = candidates[0]
                best = None
                for candidate in candidates:
                    adjusted = candidate.score * (1 - self.config.load_penalty * load.get(candidate.key, 0))
                    if best is None or adjusted > best:
                        best = adjusted
                        chosen = candidate

            assignments[task.id] = chosen
            load[chosen.key] = load.get(chosen.key, 0) + 1

        logger.info(f"Assigned {len(tasks)} tasks across {len(load)} workers")
        return assignments

    @staticmethod
    def calculate_confidence(tasks: List[Task], assignments: Dict[str, Worker]) -> float:
        """
        Confidence in an assignment, between 0 and 1.

        Unscored assignments count as medium confidence.
        """
        if not tasks:
            return 0.0

        total = 0.0
        for task in tasks:
            worker = assignments.get(task.id)
            if worker is not None and worker.score:
                total += min(worker.score, 10)
            else:
                total += 5
        return total / (len(tasks) * 10)
