"""
In-memory collaborators for exercising the execution engine without Redis,
Celery or outbound HTTP.
"""

import random
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
import pytest
from services.orchestrator.engine.orchestrator import ExecutionEngine
from shared.exceptions import CollaboratorError, TaskError
from shared.types import Contact, ExecutionStatus, Workflow, WorkflowStatus

# Wednesday
START = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


class FakeClock:

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryWorkflows:

    def __init__(self):
        self.current: Dict[str, Workflow] = {}
        self.versions: Dict[tuple, Workflow] = {}

    def save(self, workflow: Workflow) -> None:
        self.current[workflow.id] = workflow
        self.versions[(workflow.id, workflow.version)] = workflow

    def get(self, workflow_id: str) -> Optional[Workflow]:
        return self.current.get(workflow_id)

    def get_version(self, workflow_id: str, version: int) -> Optional[Workflow]:
        return self.versions.get((workflow_id, version))

    def active_for_organization(self, organization_id: str) -> List[Workflow]:
        return [
            w for w in self.current.values()
            if w.organization_id == organization_id and w.status == WorkflowStatus.ACTIVE
        ]


class InMemoryRecords:

    def __init__(self):
        self.records = {}
        self.daily_counts = {}
        self.held: set = set()

    def save(self, record) -> None:
        self.records[record.id] = record.model_copy(deep=True)

    def get(self, execution_id: str):
        record = self.records.get(execution_id)
        return record.model_copy(deep=True) if record is not None else None

    def list_for_contact(self, workflow_id: str, contact_id: str):
        return [
            r.model_copy(deep=True) for r in self.records.values()
            if r.workflow_id == workflow_id and r.contact_id == contact_id
        ]

    def waiting_for_contact(self, contact_id: str):
        return [
            r.model_copy(deep=True) for r in self.records.values()
            if r.contact_id == contact_id and r.status == ExecutionStatus.WAITING
        ]

    def reserve_daily_slot(self, workflow_id: str, day, limit: int) -> bool:
        key = (workflow_id, day)
        if self.daily_counts.get(key, 0) >= limit:
            return False
        self.daily_counts[key] = self.daily_counts.get(key, 0) + 1
        return True

    @contextmanager
    def _hold(self, key):
        """Tracks which locks are held so tests can check what ran under them."""
        self.held.add(key)
        try:
            yield
        finally:
            self.held.discard(key)

    def lock(self, execution_id: str):
        return self._hold(execution_id)

    def enrollment_lock(self, workflow_id: str, contact_id: str):
        return self._hold((workflow_id, contact_id))


class InMemoryContacts:

    def __init__(self, *contacts: Contact):
        self.contacts = {c.id: c for c in contacts}
        self.last_messages: Dict[str, str] = {}

    def get(self, contact_id: str) -> Optional[Contact]:
        return self.contacts.get(contact_id)

    def add_tags(self, contact_id: str, tag_ids: List[str]) -> None:
        contact = self.contacts[contact_id]
        contact.tags.extend(t for t in tag_ids if t not in contact.tags)

    def remove_tags(self, contact_id: str, tag_ids: List[str]) -> None:
        contact = self.contacts[contact_id]
        contact.tags = [t for t in contact.tags if t not in tag_ids]

    def update_field(self, contact_id: str, field_name: str, value: Any) -> None:
        self.contacts[contact_id].custom_fields[field_name] = value

    def add_to_list(self, contact_id: str, list_id: str) -> None:
        self.contacts[contact_id].lists.append(list_id)

    def remove_from_list(self, contact_id: str, list_id: str) -> None:
        contact = self.contacts[contact_id]
        contact.lists = [l for l in contact.lists if l != list_id]

    def last_inbound_message(self, contact_id: str) -> Optional[str]:
        return self.last_messages.get(contact_id)


class FakeMessenger:

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []

    def send_text(self, contact, text, media_url=None, media_type=None):
        self.sent.append({"contact_id": contact.id, "text": text, "media_url": media_url})
        return {"message_id": f"wamid.{len(self.sent)}"}

    def send_template(self, contact, template_id, language, variables):
        self.sent.append({"contact_id": contact.id, "template_id": template_id, "variables": variables})
        return {"message_id": f"wamid.{len(self.sent)}"}

    def notify(self, email, message, context):
        self.notifications.append({"email": email, "message": message, **context})


class FakeScheduler:

    def __init__(self):
        self.scheduled: List[tuple] = []

    def schedule(self, execution_id: str, at: datetime) -> None:
        self.scheduled.append((execution_id, at))


class FakeWebhook:
    """Fails with a retryable error ``failures`` times, then answers ``response``."""

    def __init__(self, failures: int = 0, response: Any = None, retryable: bool = True):
        self.failures = failures
        self.response = response if response is not None else {"ok": True}
        self.retryable = retryable
        self.calls: List[Dict[str, Any]] = []

    def call(self, method, url, headers, body, timeout):
        self.calls.append({"method": method, "url": url, "headers": headers, "body": body})
        if len(self.calls) <= self.failures:
            raise CollaboratorError(TaskError(
                error_type="HTTP_ERROR",
                error_message="HTTP 503: Service Unavailable",
                http_status_code=503,
                is_retryable=self.retryable,
            ))
        return self.response


class FakeAI:

    def __init__(self, results: Optional[Dict[str, Dict[str, Any]]] = None):
        self.results = results or {}
        self.calls: List[tuple] = []

    def run(self, action, config, message):
        self.calls.append((action, message))
        return dict(self.results.get(action, {}))


class FakeGoals:

    def __init__(self):
        self.recorded: List[tuple] = []

    def record(self, workflow_id, execution_id, contact_id, goal):
        self.recorded.append((workflow_id, execution_id, contact_id, goal.goal_name))


@pytest.fixture
def env():
    """Engine wired to in-memory collaborators, with a controllable clock."""
    ns = SimpleNamespace(
        clock=FakeClock(),
        workflows=InMemoryWorkflows(),
        records=InMemoryRecords(),
        contacts=InMemoryContacts(
            Contact(id="c1", phone="+351900000001", name="Ana Silva", tags=["vip"], custom_fields={"tier": "Gold"}),
            Contact(id="c2", phone="+351900000002", name="Rui", tags=[]),
        ),
        messenger=FakeMessenger(),
        scheduler=FakeScheduler(),
        webhooks=FakeWebhook(),
        ai=FakeAI(),
        goals=FakeGoals(),
    )

    def build_engine():
        return ExecutionEngine(
            workflows=ns.workflows,
            records=ns.records,
            contacts=ns.contacts,
            messenger=ns.messenger,
            scheduler=ns.scheduler,
            webhooks=ns.webhooks,
            ai=ns.ai,
            goals=ns.goals,
            clock=ns.clock,
            rng=random.Random(7),
        )

    def run_due():
        """Fires every scheduled resume in time order, advancing the clock to each."""
        while ns.scheduler.scheduled:
            ns.scheduler.scheduled.sort(key=lambda item: item[1])
            execution_id, at = ns.scheduler.scheduled.pop(0)
            if at > ns.clock.now:
                ns.clock.now = at
            ns.engine.resume(execution_id)

    ns.run_due = run_due
    ns.engine = build_engine()
    return ns
