"""JSON logging shared by the API and the engine worker.

Every record carries the request correlation id and, inside engine tasks,
the execution id being processed.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
from pythonjsonlogger.json import JsonFormatter
from shared.settings import get_settings

correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='')
execution_id_var: ContextVar[str] = ContextVar('execution_id', default='')

# third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("urllib3", "celery.worker.strategy", "httpx")


class ExecutionContextFilter(logging.Filter):

    def filter(self, record):
        record.correlation_id = correlation_id_var.get('')
        if not hasattr(record, "execution_id"):
            record.execution_id = execution_id_var.get('') or None
        return True


def setup_logging(service_name: str, level: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel(level or get_settings().log_level)
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(correlation_id)s %(execution_id)s %(message)s',
        rename_fields={'asctime': 'timestamp', 'name': 'logger', 'levelname': 'level'},
        static_fields={'service': service_name},
    ))
    handler.addFilter(ExecutionContextFilter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info("Logging configured", extra={"log_level": root.level})


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    return correlation_id_var.get('')


@contextmanager
def task_context(correlation_id: str = "", execution_id: str = "") -> Iterator[None]:
    """Binds correlation and execution ids for the duration of one engine task."""
    correlation_token = correlation_id_var.set(correlation_id or correlation_id_var.get(''))
    execution_token = execution_id_var.set(execution_id)
    try:
        yield
    finally:
        execution_id_var.reset(execution_token)
        correlation_id_var.reset(correlation_token)
