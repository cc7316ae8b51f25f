"""
Celery broker configuration for Orchestrator service.
"""

import logging
from datetime import datetime
from celery import Celery
from shared.logging_config import get_correlation_id
from shared.settings import get_settings


def create_celery_app() -> Celery:
    redis_url = get_settings().redis_url

    app = Celery(
        "orchestrator",
        broker=redis_url,
        backend=redis_url
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_track_started=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_reject_on_worker_lost=True,
        task_routes={
            "engine.*": {"queue": "engine"},
        }
    )

    return app


class CeleryScheduler:
    """Durable resume scheduling: one ``engine.resume_execution`` task per wake-up"""

    def __init__(self, celery_app: Celery):
        self.celery = celery_app

    def schedule(self, execution_id: str, at: datetime) -> None:
        logging.info("Scheduling resume", extra={"execution_id": execution_id, "resume_at": at.isoformat()})
        self.celery.send_task(
            "engine.resume_execution",
            kwargs={"execution_id": execution_id, "correlation_id": get_correlation_id()},
            eta=at,
            queue="engine",
        )
