"""Interfaces the execution engine depends on.

The engine only talks to these protocols; Redis, Celery, requests and the
WhatsApp/AI clients implement them in production and tests swap in fakes.
"""

from datetime import date, datetime
from typing import Any, ContextManager, Dict, List, Optional, Protocol
from shared.node_configs import AIConfig, GoalConfig
from shared.types import Contact, ExecutionRecord, Workflow


class ContactStore(Protocol):

    def get(self, contact_id: str) -> Optional[Contact]: ...

    def add_tags(self, contact_id: str, tag_ids: List[str]) -> None: ...

    def remove_tags(self, contact_id: str, tag_ids: List[str]) -> None: ...

    def update_field(self, contact_id: str, field_name: str, value: Any) -> None: ...

    def add_to_list(self, contact_id: str, list_id: str) -> None: ...

    def remove_from_list(self, contact_id: str, list_id: str) -> None: ...

    def last_inbound_message(self, contact_id: str) -> Optional[str]: ...


class MessageDispatcher(Protocol):

    def send_text(self, contact: Contact, text: str, media_url: Optional[str] = None, media_type: Optional[str] = None) -> Dict[str, Any]: ...

    def send_template(self, contact: Contact, template_id: str, language: str, variables: Dict[str, str]) -> Dict[str, Any]: ...

    def notify(self, email: str, message: str, context: Dict[str, Any]) -> None: ...


class Scheduler(Protocol):

    def schedule(self, execution_id: str, at: datetime) -> None: ...


class WebhookClient(Protocol):
    """Raises CollaboratorError on failure."""

    def call(self, method: str, url: str, headers: Dict[str, str], body: Any, timeout: int) -> Any: ...


class AIClient(Protocol):
    """Raises CollaboratorError on failure."""

    def run(self, action: str, config: AIConfig, message: str) -> Dict[str, Any]: ...


class GoalTracker(Protocol):

    def record(self, workflow_id: str, execution_id: str, contact_id: str, goal: GoalConfig) -> None: ...


class ExecutionStore(Protocol):

    def get(self, execution_id: str) -> Optional[ExecutionRecord]: ...

    def save(self, record: ExecutionRecord) -> None: ...

    def list_for_contact(self, workflow_id: str, contact_id: str) -> List[ExecutionRecord]: ...

    def waiting_for_contact(self, contact_id: str) -> List[ExecutionRecord]: ...

    def reserve_daily_slot(self, workflow_id: str, day: date, limit: int) -> bool: ...

    def lock(self, execution_id: str) -> ContextManager[Any]: ...

    def enrollment_lock(self, workflow_id: str, contact_id: str) -> ContextManager[Any]: ...


class WorkflowRepository(Protocol):

    def get(self, workflow_id: str) -> Optional[Workflow]: ...

    def get_version(self, workflow_id: str, version: int) -> Optional[Workflow]: ...

    def active_for_organization(self, organization_id: str) -> List[Workflow]: ...
