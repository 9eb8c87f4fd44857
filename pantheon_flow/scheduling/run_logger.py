"""
Run Logger - structured logging of scheduler decisions.

Every skip, substitution, cancellation and abort taken during a budgeted run
is recorded as a RunLogEntry and forwarded to the module logger.
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional


class LogLevel(str, Enum):
    """Log level"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    DECISION = "decision"  # scheduler admission decision


_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.DECISION: logging.INFO,
}


@dataclass
class RunLogEntry:
    """Structured log entry"""
    timestamp: str
    level: LogLevel
    execution_id: str
    message: str
    task_id: Optional[str] = None
    worker: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "execution_id": self.execution_id,
            "message": self.message,
            "task_id": self.task_id,
            "worker": self.worker,
            "metadata": self.metadata,
        }

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class RunLogger:
    """
    Scheduler run logger

    Responsibilities:
    - Build structured log entries
    - Forward them to a callback (e.g. a dashboard feed)
    - Keep the most recent entries in memory
    """

    def __init__(
        self,
        callback: Optional[Callable[[RunLogEntry], None]] = None,
        max_entries: int = 1000,
        logger_name: str = "pantheon_flow.scheduling.run",
    ):
        """
        Args:
            callback: Called with every new entry
            max_entries: How many entries to keep in memory
            logger_name: Python logger the entries are mirrored to
        """
        self._callback = callback
        self._entries: Deque[RunLogEntry] = deque(maxlen=max_entries)
        self._logger = logging.getLogger(logger_name)

    def set_callback(self, callback: Optional[Callable[[RunLogEntry], None]]) -> None:
        """Set the entry callback"""
        self._callback = callback

    def log(
        self,
        execution_id: str,
        level: LogLevel,
        message: str,
        task_id: Optional[str] = None,
        worker: Optional[str] = None,
        **metadata
    ) -> RunLogEntry:
        """
        Record an entry

        Args:
            execution_id: Run id
            level: Log level
            message: Log message
            task_id: Task id, if the entry concerns one task
            worker: Worker key
            **metadata: Extra metadata

        Returns:
            The created RunLogEntry
        """
        entry = RunLogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            execution_id=execution_id,
            message=message,
            task_id=task_id,
            worker=worker,
            metadata=metadata,
        )
        self._entries.append(entry)

        prefix = f"[{execution_id}]" + (f" {task_id}:" if task_id else "")
        self._logger.log(_PY_LEVELS[level], f"{prefix} {message}")

        if self._callback:
            self._callback(entry)

        return entry

    # Convenience methods
    def info(self, execution_id: str, message: str, task_id: Optional[str] = None, **metadata) -> RunLogEntry:
        """INFO level entry"""
        return self.log(execution_id, LogLevel.INFO, message, task_id, **metadata)

    def warning(self, execution_id: str, message: str, task_id: Optional[str] = None, **metadata) -> RunLogEntry:
        """WARNING level entry"""
        return self.log(execution_id, LogLevel.WARNING, message, task_id, **metadata)

    def error(self, execution_id: str, message: str, task_id: Optional[str] = None, **metadata) -> RunLogEntry:
        """ERROR level entry"""
        return self.log(execution_id, LogLevel.ERROR, message, task_id, **metadata)

    def decision(
        self,
        execution_id: str,
        decision: str,
        reason: str,
        task_id: Optional[str] = None,
        **metadata
    ) -> RunLogEntry:
        """
        Scheduler decision entry

        Args:
            execution_id: Run id
            decision: What was decided (skip, substitute, cancel, ...)
            reason: Why
            task_id: Affected task
        """
        return self.log(
            execution_id, LogLevel.DECISION, f"{decision}: {reason}", task_id,
            decision=decision, reason=reason, **metadata
        )

    def entries(self, execution_id: Optional[str] = None) -> List[RunLogEntry]:
        """Recorded entries, optionally for one run"""
        if execution_id is None:
            return list(self._entries)
        return [e for e in self._entries if e.execution_id == execution_id]

    def clear(self) -> None:
        self._entries.clear()
