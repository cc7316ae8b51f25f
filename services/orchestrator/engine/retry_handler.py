"""Retry decisions and backoff delays for failed collaborator calls."""

import logging
from typing import Optional, Tuple
from shared.exceptions import TaskError
from shared.constants import (
    INITIAL_RETRY_DELAY_SECONDS,
    MAX_RETRY_DELAY_SECONDS,
)
from shared.types import ExecutionRecord


class RetryHandler:
    """Decides when to retry failed nodes and calculates backoff delays.

    Attempt counts live on the execution record (``retry_counts``) so a
    retry survives the record being reloaded by another worker.
    """

    def should_retry_node(
        self,
        record: ExecutionRecord,
        node_id: str,
        task_error: TaskError,
        max_attempts: int,
    ) -> Tuple[bool, Optional[float]]:
        """Checks if node should be retried and calculates delay"""
        if not task_error.is_retryable:
            logging.info(
                "Node error is not retryable",
                extra={
                    "execution_id": record.id,
                    "node_id": node_id,
                    "error_type": task_error.error_type,
                    "http_status_code": task_error.http_status_code,
                }
            )
            return False, None

        retry_count = self.get_retry_count(record, node_id)
        if retry_count >= max_attempts:
            logging.warning(
                "Maximum retry attempts reached",
                extra={
                    "execution_id": record.id,
                    "node_id": node_id,
                    "retry_count": retry_count,
                    "max_attempts": max_attempts
                }
            )
            return False, None

        record.retry_counts[node_id] = retry_count + 1
        delay = self._calculate_backoff_delay(retry_count, task_error)

        logging.info(
            "Node will be retried",
            extra={
                "execution_id": record.id,
                "node_id": node_id,
                "retry_attempt": retry_count + 1,
                "delay_seconds": delay
            }
        )
        return True, delay

    def get_retry_count(self, record: ExecutionRecord, node_id: str) -> int:
        return record.retry_counts.get(node_id, 0)

    def _calculate_backoff_delay(self, retry_count: int, task_error: TaskError) -> float:
        """Exponential backoff with Retry-After header support"""
        if task_error.retry_after_seconds:
            delay = min(task_error.retry_after_seconds, MAX_RETRY_DELAY_SECONDS)
            logging.debug(
                f"Using Retry-After header delay: {delay}s",
                extra={"retry_after": task_error.retry_after_seconds}
            )
        else:
            # 1s, 2s, 4s, 8s, ...
            delay = min(
                INITIAL_RETRY_DELAY_SECONDS * (2 ** retry_count),
                MAX_RETRY_DELAY_SECONDS
            )
            logging.debug(
                f"Using exponential backoff delay: {delay}s",
                extra={"retry_count": retry_count}
            )
        return delay

    def reset_retry_count(self, record: ExecutionRecord, node_id: str) -> None:
        record.retry_counts.pop(node_id, None)
