"""
Redis-backed workflow, execution, contact and goal stores for the orchestrator.
"""

import json
from datetime import date
from typing import Any, List, Optional
import redis
from shared import redis_keys
from shared.constants import ENROLLMENT_COUNTER_TTL_SECONDS, RECORD_LOCK_TIMEOUT_SECONDS, REDIS_KEY_TTL_SECONDS
from shared.node_configs import GoalConfig
from shared.settings import get_settings
from shared.types import Contact, ExecutionRecord, ExecutionStatus, Workflow, WorkflowStatus
from shared.utils import utc_now


class RedisStore:
    """Redis client wrapper for Orchestrator service"""

    def __init__(self, redis_url: str = None):
        url = redis_url or get_settings().redis_url
        self.client = redis.Redis.from_url(url, decode_responses=False)

    def get_client(self):
        return self.client


def _decode(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisWorkflowRepository:

    def __init__(self, client):
        self.redis = client

    def save(self, workflow: Workflow) -> None:
        pipe = self.redis.pipeline()
        pipe.set(redis_keys.workflow_definition(workflow.id), json.dumps(workflow.to_document()))
        pipe.sadd(redis_keys.organization_workflows(workflow.organization_id), workflow.id)
        if workflow.status == WorkflowStatus.ACTIVE:
            pipe.sadd(redis_keys.organization_active_workflows(workflow.organization_id), workflow.id)
        else:
            pipe.srem(redis_keys.organization_active_workflows(workflow.organization_id), workflow.id)
        pipe.execute()

    def save_version(self, workflow: Workflow) -> bool:
        """Pins an immutable snapshot of ``workflow`` under its version number."""
        return bool(self.redis.set(
            redis_keys.workflow_version(workflow.id, workflow.version),
            json.dumps(workflow.to_document()),
            nx=True,
        ))

    def get(self, workflow_id: str) -> Optional[Workflow]:
        return self._load(redis_keys.workflow_definition(workflow_id))

    def get_version(self, workflow_id: str, version: int) -> Optional[Workflow]:
        return self._load(redis_keys.workflow_version(workflow_id, version))

    def active_for_organization(self, organization_id: str) -> List[Workflow]:
        workflows = []
        for workflow_id in self.redis.smembers(redis_keys.organization_active_workflows(organization_id)):
            workflow = self.get(_decode(workflow_id))
            if workflow is not None and workflow.status == WorkflowStatus.ACTIVE:
                workflows.append(workflow)
        return sorted(workflows, key=lambda w: w.id)

    def _load(self, key: str) -> Optional[Workflow]:
        data = self.redis.get(key)
        if not data:
            return None
        return Workflow.model_validate(json.loads(data))


def record_ttl(record: ExecutionRecord) -> Optional[int]:
    """Seconds a saved record is kept; None keeps it with no expiry.

    Finished records expire after REDIS_KEY_TTL_SECONDS. A waiting record
    outlives its scheduled resume by the same margin, and an open-ended wait
    never expires.
    """
    if record.is_terminal:
        return REDIS_KEY_TTL_SECONDS
    if record.scheduled_resume_at is None:
        return None
    until_resume = int((record.scheduled_resume_at - utc_now()).total_seconds())
    return REDIS_KEY_TTL_SECONDS + max(until_resume, 0)


class RedisExecutionStore:

    def __init__(self, client):
        self.redis = client

    def save(self, record: ExecutionRecord) -> None:
        waiting_key = redis_keys.contact_waiting(record.contact_id)
        index_key = redis_keys.contact_executions(record.workflow_id, record.contact_id)
        ttl = record_ttl(record)
        pipe = self.redis.pipeline()
        pipe.set(redis_keys.execution_record(record.id), json.dumps(record.to_document()), ex=ttl)
        pipe.sadd(index_key, record.id)
        if ttl is None:
            pipe.persist(index_key)
        else:
            pipe.expire(index_key, ttl)
        if record.status == ExecutionStatus.WAITING:
            pipe.sadd(waiting_key, record.id)
        else:
            pipe.srem(waiting_key, record.id)
        pipe.execute()

    def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        data = self.redis.get(redis_keys.execution_record(execution_id))
        if not data:
            return None
        return ExecutionRecord.model_validate(json.loads(data))

    def _get_many(self, key: str) -> List[ExecutionRecord]:
        records = []
        for execution_id in self.redis.smembers(key):
            record = self.get(_decode(execution_id))
            if record is not None:
                records.append(record)
        return sorted(records, key=lambda r: r.enrolled_at)

    def list_for_contact(self, workflow_id: str, contact_id: str) -> List[ExecutionRecord]:
        return self._get_many(redis_keys.contact_executions(workflow_id, contact_id))

    def waiting_for_contact(self, contact_id: str) -> List[ExecutionRecord]:
        return [r for r in self._get_many(redis_keys.contact_waiting(contact_id)) if r.status == ExecutionStatus.WAITING]

    def reserve_daily_slot(self, workflow_id: str, day: date, limit: int) -> bool:
        """Atomically takes one of ``limit`` enrollment slots for ``day``."""
        key = redis_keys.daily_enrollments(workflow_id, day)
        count = self.redis.incr(key)
        if count == 1:
            self.redis.expire(key, ENROLLMENT_COUNTER_TTL_SECONDS)
        if count > limit:
            self.redis.decr(key)
            return False
        return True

    def lock(self, execution_id: str):
        return self.redis.lock(redis_keys.execution_lock(execution_id), timeout=RECORD_LOCK_TIMEOUT_SECONDS)

    def enrollment_lock(self, workflow_id: str, contact_id: str):
        return self.redis.lock(redis_keys.enrollment_lock(workflow_id, contact_id), timeout=RECORD_LOCK_TIMEOUT_SECONDS)


class RedisContactStore:
    """Contact read model plus the mutations actions may apply."""

    def __init__(self, client):
        self.redis = client

    def get(self, contact_id: str) -> Optional[Contact]:
        data = self.redis.get(redis_keys.contact_document(contact_id))
        if not data:
            return None
        return Contact.model_validate(json.loads(data))

    def save(self, contact: Contact) -> None:
        self.redis.set(redis_keys.contact_document(contact.id), json.dumps(contact.model_dump(by_alias=True, mode="json")))

    def _mutate(self, contact_id: str, change) -> None:
        contact = self.get(contact_id)
        if contact is None:
            return
        change(contact)
        self.save(contact)

    def add_tags(self, contact_id: str, tag_ids: List[str]) -> None:
        self._mutate(contact_id, lambda c: c.tags.extend(t for t in tag_ids if t not in c.tags))

    def remove_tags(self, contact_id: str, tag_ids: List[str]) -> None:
        def change(contact: Contact) -> None:
            contact.tags = [t for t in contact.tags if t not in tag_ids]
        self._mutate(contact_id, change)

    def update_field(self, contact_id: str, field_name: str, value: Any) -> None:
        self._mutate(contact_id, lambda c: c.custom_fields.__setitem__(field_name, value))

    def add_to_list(self, contact_id: str, list_id: str) -> None:
        def change(contact: Contact) -> None:
            if list_id not in contact.lists:
                contact.lists.append(list_id)
        self._mutate(contact_id, change)

    def remove_from_list(self, contact_id: str, list_id: str) -> None:
        def change(contact: Contact) -> None:
            contact.lists = [l for l in contact.lists if l != list_id]
        self._mutate(contact_id, change)

    def last_inbound_message(self, contact_id: str) -> Optional[str]:
        data = self.redis.get(redis_keys.contact_last_message(contact_id))
        return _decode(data) if data else None


class RedisGoalTracker:

    def __init__(self, client):
        self.redis = client

    def record(self, workflow_id: str, execution_id: str, contact_id: str, goal: GoalConfig) -> None:
        conversion = {
            "execution_id": execution_id,
            "contact_id": contact_id,
            "goal_type": goal.goal_type,
            "goal_name": goal.goal_name,
            "at": utc_now().isoformat(),
        }
        pipe = self.redis.pipeline()
        pipe.hincrby(redis_keys.workflow_goals(workflow_id), goal.goal_name or goal.goal_type, 1)
        if goal.goal_type == "revenue" and goal.revenue_amount:
            conversion.update({"revenue_amount": goal.revenue_amount, "currency": goal.currency})
            pipe.hincrbyfloat(redis_keys.workflow_revenue(workflow_id), goal.currency, goal.revenue_amount)
        pipe.lpush(redis_keys.workflow_conversions(workflow_id), json.dumps(conversion))
        pipe.execute()
