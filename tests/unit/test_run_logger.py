"""
Run logger tests
"""

import json
import logging

from pantheon_flow.scheduling.run_logger import LogLevel, RunLogger


class TestRunLogger:
    """RunLogger tests"""

    def test_log_creates_entry(self):
        run_logger = RunLogger()
        entry = run_logger.info("exec-1", "started", task_id="a", worker="builtin:zeus")

        assert entry.level == LogLevel.INFO
        assert entry.execution_id == "exec-1"
        assert entry.task_id == "a"
        assert run_logger.entries() == [entry]

    def test_callback(self):
        seen = []
        run_logger = RunLogger(callback=seen.append)
        run_logger.warning("exec-1", "slow")
        run_logger.set_callback(None)
        run_logger.error("exec-1", "broken")

        assert [e.message for e in seen] == ["slow"]

    def test_filter_by_execution(self):
        run_logger = RunLogger()
        run_logger.info("exec-1", "one")
        run_logger.info("exec-2", "two")

        assert [e.message for e in run_logger.entries("exec-2")] == ["two"]
        run_logger.clear()
        assert run_logger.entries() == []

    def test_decision_metadata(self):
        run_logger = RunLogger()
        entry = run_logger.decision("exec-1", "skip", "insufficient-budget", task_id="c", estimate=45.0)

        assert entry.level == LogLevel.DECISION
        assert entry.message == "skip: insufficient-budget"
        assert entry.metadata == {"decision": "skip", "reason": "insufficient-budget", "estimate": 45.0}

    def test_to_json(self):
        entry = RunLogger().decision("exec-1", "cancel", "budget-exceeded", task_id="b")
        data = json.loads(entry.to_json())

        assert data["level"] == "decision"
        assert data["task_id"] == "b"
        assert data["metadata"]["reason"] == "budget-exceeded"

    def test_bounded(self):
        run_logger = RunLogger(max_entries=2)
        for i in range(3):
            run_logger.info("exec-1", f"m{i}")

        assert [e.message for e in run_logger.entries()] == ["m1", "m2"]

    def test_mirrored_to_logging(self, caplog):
        run_logger = RunLogger(logger_name="pantheon_flow.test_run")

        with caplog.at_level(logging.INFO, logger="pantheon_flow.test_run"):
            run_logger.decision("exec-1", "abort", "budget-exhausted")
            run_logger.error("exec-1", "task failed", task_id="a")

        assert caplog.records[0].levelno == logging.INFO
        assert caplog.records[0].getMessage() == "[exec-1] abort: budget-exhausted"
        assert caplog.records[1].levelno == logging.ERROR
        assert caplog.records[1].getMessage() == "[exec-1] a: task failed"
