"""Trigger matching, re-entry rules and wait-until event matching."""

from typing import Any, Dict, List, Optional
from shared.node_configs import TriggerConfig, WaitUntilConfig
from shared.types import Contact, ExecutionRecord, ExecutionStatus, TriggerEvent, WorkflowSettings

FINISHED_STATUSES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.EXITED}

# wait-until event type -> trigger event types that satisfy it
WAIT_EVENT_SOURCES = {
    "tag_applied": {"tag_applied"},
    "field_changed": {"custom_field_changed"},
    "message_received": {"contact_replied"},
    "webhook_received": {"webhook_received"},
}


def event_value(event: TriggerEvent, key: str) -> Any:
    """Reads ``key`` from event data, accepting camelCase or snake_case."""
    if key in event.data:
        return event.data[key]
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in key)
    return event.data.get(snake)


def matches_trigger(config: TriggerConfig, event: TriggerEvent, workflow_id: Optional[str] = None) -> bool:
    if config.trigger_type != event.type:
        return False

    if config.trigger_type == "tag_applied":
        return not config.tag_ids or event_value(event, "tagId") in config.tag_ids

    if config.trigger_type == "contact_added":
        list_id = event_value(event, "listId")
        return not config.list_ids or list_id in config.list_ids

    if config.trigger_type == "custom_field_changed":
        if config.field_name and event_value(event, "fieldName") != config.field_name:
            return False
        if config.field_value and str(event_value(event, "fieldValue")) != config.field_value:
            return False
        return True

    if config.trigger_type == "date_time":
        # only the scheduled tick for this workflow fires a date_time trigger
        return workflow_id is not None and event_value(event, "workflowId") == workflow_id

    return True


def can_enroll(settings: WorkflowSettings, existing: List[ExecutionRecord]) -> bool:
    """Re-entry rules: no concurrent run, re-entry opt-in, per-contact cap."""
    if not existing:
        return True
    if not settings.allow_reentry:
        return False
    if any(record.status not in FINISHED_STATUSES for record in existing):
        return False
    return len(existing) < settings.max_executions_per_contact


def build_waiting_for(node_id: str, config: WaitUntilConfig) -> Dict[str, Any]:
    waiting_for = {"nodeId": node_id, "eventType": config.event_type}
    if config.tag_id:
        waiting_for["tagId"] = config.tag_id
    if config.field_name:
        waiting_for["fieldName"] = config.field_name
    if config.expected_value is not None:
        waiting_for["expectedValue"] = config.expected_value
    return waiting_for


def matches_wait(waiting_for: Dict[str, Any], event: TriggerEvent) -> bool:
    """Checks whether ``event`` releases a record waiting on ``waiting_for``."""
    if event.type not in WAIT_EVENT_SOURCES.get(waiting_for.get("eventType"), set()):
        return False
    if waiting_for["eventType"] == "tag_applied":
        return event_value(event, "tagId") == waiting_for.get("tagId")
    if waiting_for["eventType"] == "field_changed":
        if event_value(event, "fieldName") != waiting_for.get("fieldName"):
            return False
        expected = waiting_for.get("expectedValue")
        return expected is None or str(event_value(event, "fieldValue")) == expected
    return True


def is_wait_satisfied(config: WaitUntilConfig, contact: Optional[Contact]) -> bool:
    """True when the awaited state already holds, so the node need not wait."""
    if contact is None:
        return False
    if config.event_type == "tag_applied":
        return config.tag_id in contact.tags
    if config.event_type == "field_changed":
        if config.field_name not in contact.custom_fields:
            return False
        if config.expected_value is None:
            return False
        return str(contact.custom_fields[config.field_name]) == config.expected_value
    return False
