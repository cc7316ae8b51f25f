"""Orchestrator service for workflow execution."""

import logging
from services.integrations.ai import OpenRouterClient
from services.integrations.webhook import RequestsWebhookClient
from services.integrations.whatsapp import WhatsAppDispatcher
from services.orchestrator.engine.orchestrator import ExecutionEngine
from services.orchestrator.infra.broker import CeleryScheduler, create_celery_app
from services.orchestrator.infra.redis_store import (
    RedisContactStore,
    RedisExecutionStore,
    RedisGoalTracker,
    RedisStore,
    RedisWorkflowRepository,
)
from shared.logging_config import setup_logging, task_context
from shared.types import TriggerEvent

setup_logging("orchestrator")

celery_app = create_celery_app()
redis_client = RedisStore().get_client()
execution_store = RedisExecutionStore(redis_client)
engine = ExecutionEngine(
    workflows=RedisWorkflowRepository(redis_client),
    records=execution_store,
    contacts=RedisContactStore(redis_client),
    messenger=WhatsAppDispatcher(),
    scheduler=CeleryScheduler(celery_app),
    webhooks=RequestsWebhookClient(),
    ai=OpenRouterClient(),
    goals=RedisGoalTracker(redis_client),
)


@celery_app.task(name="engine.handle_event", bind=True)
def handle_event(self, event: dict, correlation_id: str = ""):
    trigger_event = TriggerEvent.model_validate(event)
    with task_context(correlation_id):
        logging.info("Handling event", extra={"event_type": trigger_event.type, "contact_id": trigger_event.contact_id})
        records = engine.handle_event(trigger_event)
    return [record.id for record in records]


@celery_app.task(name="engine.resume_execution", bind=True)
def resume_execution(self, execution_id: str, correlation_id: str = ""):
    with task_context(correlation_id, execution_id):
        logging.info("Resuming execution")
        with execution_store.lock(execution_id):
            record = engine.resume(execution_id)
    return record.status.value if record is not None else None


if __name__ == "__main__":
    celery_app.worker_main([
        "worker",
        "--loglevel=info",
        "-Q", "engine",
        "--concurrency=4"
    ])
