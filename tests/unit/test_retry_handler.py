"""
Unit tests for retry decisions and backoff delays.
"""

from services.orchestrator.engine.retry_handler import RetryHandler
from shared.exceptions import TaskError
from shared.types import ExecutionRecord


def retryable(**fields):
    return TaskError(error_type="HTTP_ERROR", error_message="HTTP 503", is_retryable=True, **fields)


def test_non_retryable_errors_are_not_retried():
    record = ExecutionRecord(workflow_id="wf", contact_id="c1")
    error = TaskError(error_type="HTTP_ERROR", error_message="HTTP 404", http_status_code=404)

    assert RetryHandler().should_retry_node(record, "n1", error, 3) == (False, None)
    assert record.retry_counts == {}


def test_exponential_backoff_until_limit():
    """Delays double per attempt and stop at max_attempts"""
    handler = RetryHandler()
    record = ExecutionRecord(workflow_id="wf", contact_id="c1")

    decisions = [handler.should_retry_node(record, "n1", retryable(), 3) for _ in range(4)]

    assert decisions == [(True, 1), (True, 2), (True, 4), (False, None)]
    assert handler.get_retry_count(record, "n1") == 3


def test_backoff_is_capped():
    handler = RetryHandler()
    record = ExecutionRecord(workflow_id="wf", contact_id="c1", retry_counts={"n1": 9})

    assert handler.should_retry_node(record, "n1", retryable(), 20) == (True, 60)


def test_retry_after_is_honoured_and_capped():
    handler = RetryHandler()
    record = ExecutionRecord(workflow_id="wf", contact_id="c1")

    assert handler.should_retry_node(record, "n1", retryable(retry_after_seconds=30), 5) == (True, 30)
    assert handler.should_retry_node(record, "n1", retryable(retry_after_seconds=600), 5) == (True, 60)


def test_reset_retry_count():
    handler = RetryHandler()
    record = ExecutionRecord(workflow_id="wf", contact_id="c1", retry_counts={"n1": 2, "n2": 1})

    handler.reset_retry_count(record, "n1")
    handler.reset_retry_count(record, "missing")

    assert record.retry_counts == {"n2": 1}
