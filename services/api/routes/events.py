"""Event ingestion and execution lookup routes."""

import logging
from fastapi import APIRouter, HTTPException, status
from services.api.domain.models import EventAcceptedResponse
from services.api.infra.broker import BrokerClient
from services.api.infra.redis_store import RedisStore
from shared.types import TriggerEvent


router = APIRouter()
redis_store = RedisStore()
broker = BrokerClient()


@router.post("/events", response_model=EventAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(event: TriggerEvent):
    broker.publish_event(event)
    logging.info("Event queued", extra={
        "event_type": event.type,
        "organization_id": event.organization_id,
        "contact_id": event.contact_id,
    })
    return EventAcceptedResponse(status="queued", event_type=event.type, contact_id=event.contact_id)


@router.get("/executions/{execution_id}")
async def get_execution(execution_id: str):
    record = redis_store.get_execution(execution_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail=f"Execution {execution_id} not found")
    return record.to_document()
