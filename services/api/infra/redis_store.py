"""
Redis store for API service.
"""

import redis
import json
from typing import Optional, List
from shared import redis_keys
from shared.settings import get_settings
from shared.types import ExecutionRecord, Workflow, WorkflowStatus


class RedisStore:
    """Redis client wrapper for API service"""

    def __init__(self, redis_url: Optional[str] = None):
        url = redis_url or get_settings().redis_url
        self.client = redis.Redis.from_url(url, decode_responses=False)

    def save_workflow(self, workflow: Workflow) -> None:
        active_key = redis_keys.organization_active_workflows(workflow.organization_id)
        pipe = self.client.pipeline()
        pipe.set(redis_keys.workflow_definition(workflow.id), json.dumps(workflow.to_document()))
        pipe.sadd(redis_keys.organization_workflows(workflow.organization_id), workflow.id)
        if workflow.status == WorkflowStatus.ACTIVE:
            pipe.sadd(active_key, workflow.id)
        else:
            pipe.srem(active_key, workflow.id)
        pipe.execute()

    def save_version(self, workflow: Workflow) -> None:
        # snapshots are immutable once written
        self.client.set(
            redis_keys.workflow_version(workflow.id, workflow.version),
            json.dumps(workflow.to_document()),
            nx=True,
        )

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        data = self.client.get(redis_keys.workflow_definition(workflow_id))
        if data:
            return Workflow.model_validate(json.loads(data))
        return None

    def list_workflows(self, organization_id: str) -> List[Workflow]:
        workflows = []
        for workflow_id in self.client.smembers(redis_keys.organization_workflows(organization_id)):
            workflow = self.get_workflow(workflow_id.decode('utf-8'))
            if workflow:
                workflows.append(workflow)
        return sorted(workflows, key=lambda w: w.created_at)

    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        data = self.client.get(redis_keys.execution_record(execution_id))
        if data:
            return ExecutionRecord.model_validate(json.loads(data))
        return None
