"""
Tests for log record enrichment with correlation and execution ids.
"""

import logging
from shared.logging_config import ExecutionContextFilter, get_correlation_id, set_correlation_id, task_context


def make_record(**extra):
    record = logging.LogRecord("engine", logging.INFO, __file__, 1, "step", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_task_context_binds_and_restores_ids():
    set_correlation_id("outer")

    with task_context("corr-7", "exec_1"):
        record = make_record()
        ExecutionContextFilter().filter(record)
        assert record.correlation_id == "corr-7"
        assert record.execution_id == "exec_1"

    assert get_correlation_id() == "outer"
    record = make_record()
    ExecutionContextFilter().filter(record)
    assert record.execution_id is None


def test_explicit_execution_id_is_kept():
    with task_context("corr-7", "exec_1"):
        record = make_record(execution_id="exec_2")
        ExecutionContextFilter().filter(record)

    assert record.execution_id == "exec_2"


def test_missing_correlation_id_keeps_current():
    set_correlation_id("from-request")

    with task_context():
        assert get_correlation_id() == "from-request"
