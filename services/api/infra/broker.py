"""
Message broker client for API service.
"""

from celery import Celery
from typing import Optional
from shared.logging_config import get_correlation_id
from shared.settings import get_settings
from shared.types import TriggerEvent


class BrokerClient:
    """Celery client for API service"""

    def __init__(self, broker_url: Optional[str] = None):
        url = broker_url or get_settings().redis_url

        self.app = Celery(
            "api",
            broker=url,
            backend=url
        )

        self.app.conf.update(
            task_serializer="json",
            accept_content=["json"],
            result_serializer="json",
            timezone="UTC",
            enable_utc=True,
        )

    def publish_event(self, event: TriggerEvent) -> None:
        """Send an incoming contact event to the engine for enrollment and wait resumption"""
        correlation_id = get_correlation_id()
        self.app.send_task(
            "engine.handle_event",
            kwargs={"event": event.model_dump(by_alias=True, mode="json"), "correlation_id": correlation_id},
            queue="engine"
        )
