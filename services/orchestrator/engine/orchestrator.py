"""Execution engine: walks one contact through a workflow graph."""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from services.builder.registry import check_registry_complete
from services.orchestrator.engine.collaborators import (
    AIClient,
    ContactStore,
    ExecutionStore,
    GoalTracker,
    MessageDispatcher,
    Scheduler,
    WebhookClient,
    WorkflowRepository,
)
from services.orchestrator.engine.handlers import NodeResult, StepContext, get_node_handler, list_node_handlers, retry_limit
from services.orchestrator.engine.retry_handler import RetryHandler
from services.orchestrator.engine.scheduling import workflow_zone
from services.orchestrator.engine.template import TemplateResolver
from services.orchestrator.engine.triggers import can_enroll, event_value, matches_trigger, matches_wait
from shared.constants import MAX_STEPS_PER_RUN, WAIT_TIMEOUT_HANDLE
from shared.exceptions import CollaboratorError, EnrollmentError, RoutingError, WorkflowError
from shared.types import (
    BaseNode,
    Contact,
    ExecutionRecord,
    ExecutionStatus,
    HistoryEntry,
    TriggerEvent,
    Workflow,
    WorkflowStatus,
)
from shared.utils import utc_now


class ExecutionEngine:
    """Interprets a workflow graph as a per-contact state machine.

    A record runs synchronously from node to node until it waits (delay,
    wait-until, scheduled retry) or finishes. Waiting records are resumed
    by ``resume`` (scheduler) or ``handle_event`` (incoming events).
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        records: ExecutionStore,
        contacts: ContactStore,
        messenger: MessageDispatcher,
        scheduler: Scheduler,
        webhooks: WebhookClient,
        ai: AIClient,
        goals: GoalTracker,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.workflows = workflows
        self.records = records
        self.contacts = contacts
        self.messenger = messenger
        self.scheduler = scheduler
        self.webhooks = webhooks
        self.ai = ai
        self.goals = goals
        self.clock = clock or utc_now
        self.rng = rng or random.Random()
        self.templates = TemplateResolver()
        self.retry_handler = RetryHandler()
        check_registry_complete(list_node_handlers())

    def enroll(self, workflow: Workflow, contact_id: str, event: Optional[TriggerEvent] = None) -> Optional[ExecutionRecord]:
        """Starts a new execution for ``contact_id``; None when enrollment is refused."""
        log_extra = {"workflow_id": workflow.id, "contact_id": contact_id}
        if workflow.status != WorkflowStatus.ACTIVE:
            logging.info("Enrollment skipped, workflow not active", extra={**log_extra, "status": workflow.status.value})
            return None

        triggers = workflow.trigger_nodes()
        if len(triggers) != 1:
            raise EnrollmentError(f"Workflow '{workflow.id}' must have exactly one trigger", workflow_id=workflow.id)

        # re-entry check and first save must not interleave with another enrollment
        with self.records.enrollment_lock(workflow.id, contact_id):
            existing = self.records.list_for_contact(workflow.id, contact_id)
            if not can_enroll(workflow.settings, existing):
                logging.info("Enrollment refused by re-entry rules", extra={**log_extra, "existing": len(existing)})
                return None

            now = self.clock()
            limit = workflow.settings.max_contacts_per_day
            if limit is not None:
                today = now.astimezone(workflow_zone(workflow.settings)).date()
                if not self.records.reserve_daily_slot(workflow.id, today, limit):
                    logging.info("Enrollment refused by daily limit", extra={**log_extra, "limit": limit})
                    return None

            context = {"trigger": dict(event.data) if event else {}}
            if event is not None and event.type == "contact_replied":
                message = event_value(event, "message") or event_value(event, "text")
                if message:
                    context["lastMessage"] = message

            record = ExecutionRecord(
                workflow_id=workflow.id,
                workflow_version=workflow.version,
                contact_id=contact_id,
                organization_id=workflow.organization_id,
                current_node_id=triggers[0].id,
                context=context,
                enrolled_at=now,
                trigger_type=event.type if event else triggers[0].config.trigger_type,
            )
            self.records.save(record)

        logging.info("Contact enrolled", extra={**log_extra, "execution_id": record.id, "workflow_version": workflow.version})
        self._run(record, workflow)
        return record

    def handle_event(self, event: TriggerEvent) -> List[ExecutionRecord]:
        """Resumes matching waits for the contact, then enrolls into matching workflows."""
        touched: List[ExecutionRecord] = []

        for waiting in self.records.waiting_for_contact(event.contact_id):
            with self.records.lock(waiting.id):
                # a scheduled resume may have moved the record since it was listed
                record = self.records.get(waiting.id)
                if record is None or record.status != ExecutionStatus.WAITING:
                    continue
                if event.type == "contact_replied":
                    self._note_reply(record, event)
                if record.waiting_for and matches_wait(record.waiting_for, event):
                    resumed = self.resume(record.id, reason="event")
                    if resumed is not None:
                        touched.append(resumed)

        for workflow in self.workflows.active_for_organization(event.organization_id):
            triggers = workflow.trigger_nodes()
            if len(triggers) != 1 or not matches_trigger(triggers[0].config, event, workflow.id):
                continue
            record = self.enroll(workflow, event.contact_id, event)
            if record is not None:
                touched.append(record)

        logging.info("Event handled", extra={
            "event_type": event.type,
            "contact_id": event.contact_id,
            "records": len(touched),
        })
        return touched

    def resume(self, execution_id: str, now: Optional[datetime] = None, reason: str = "scheduled") -> Optional[ExecutionRecord]:
        """Continues a waiting record. Early, stale or duplicate resumes are ignored."""
        record = self.records.get(execution_id)
        if record is None:
            logging.warning("Resume for unknown execution", extra={"execution_id": execution_id})
            return None
        if record.status != ExecutionStatus.WAITING:
            logging.info("Resume ignored, record not waiting", extra={"execution_id": execution_id, "status": record.status.value})
            return record

        now = now or self.clock()
        workflow = self._pinned_workflow(record)
        if workflow is None:
            self._fail(record, None, f"Workflow '{record.workflow_id}' version {record.workflow_version} not found")
            self.records.save(record)
            return record

        if reason == "event":
            if not record.waiting_for:
                return record
        elif record.scheduled_resume_at is None or record.scheduled_resume_at > now:
            logging.info("Resume ignored, not due", extra={
                "execution_id": execution_id,
                "scheduled_resume_at": record.scheduled_resume_at.isoformat() if record.scheduled_resume_at else None,
            })
            return record

        if record.waiting_for:
            # event-driven wait: pointer is still on the wait_until node
            node = workflow.get_node(record.current_node_id)
            if node is None:
                self._fail(record, record.current_node_id, f"Node '{record.current_node_id}' not found in workflow", now=now)
                self.records.save(record)
                return record
            self._wake(record)
            if reason == "event":
                self._append_history(record, node, "event_received", now)
                self._advance(record, workflow, node, NodeResult("event_received"))
            else:
                self._append_history(record, node, "timed_out", now)
                self._advance(record, workflow, node, NodeResult("timed_out", handle=WAIT_TIMEOUT_HANDLE), fallback_default=True)
        else:
            self._wake(record)

        if record.status == ExecutionStatus.ACTIVE and record.current_node_id is None:
            self._complete(record, now)
        self._run(record, workflow)
        return record

    def _pinned_workflow(self, record: ExecutionRecord) -> Optional[Workflow]:
        workflow = self.workflows.get_version(record.workflow_id, record.workflow_version)
        return workflow or self.workflows.get(record.workflow_id)

    def _wake(self, record: ExecutionRecord) -> None:
        record.status = ExecutionStatus.ACTIVE
        record.scheduled_resume_at = None
        record.waiting_for = None

    def _note_reply(self, record: ExecutionRecord, event: TriggerEvent) -> None:
        record.context["repliedAt"] = event.timestamp.isoformat()
        message = event_value(event, "message") or event_value(event, "text")
        if message:
            record.context["lastMessage"] = message
        self.records.save(record)

    def _replied_since_enrollment(self, record: ExecutionRecord, contact: Optional[Contact]) -> bool:
        replied_at = contact.last_reply_at if contact is not None else None
        if replied_at is None and record.context.get("repliedAt"):
            replied_at = datetime.fromisoformat(record.context["repliedAt"])
        if replied_at is None:
            return False
        if replied_at.tzinfo is None:
            replied_at = replied_at.replace(tzinfo=timezone.utc)
        return replied_at > record.enrolled_at

    def _run(self, record: ExecutionRecord, workflow: Workflow) -> None:
        steps = 0
        max_steps = max(MAX_STEPS_PER_RUN, len(workflow.nodes) + 1)
        while record.status == ExecutionStatus.ACTIVE:
            now = self.clock()
            if steps >= max_steps:
                self._fail(record, record.current_node_id, f"Exceeded {max_steps} steps without waiting")
                break
            steps += 1

            node = workflow.get_node(record.current_node_id)
            if node is None:
                self._fail(record, record.current_node_id, f"Node '{record.current_node_id}' not found in workflow")
                break

            contact = self.contacts.get(record.contact_id)
            if workflow.settings.stop_on_reply and self._replied_since_enrollment(record, contact):
                record.status = ExecutionStatus.EXITED
                record.completed_at = now
                self._append_history(record, node, "exited", now, {"reason": "contact_replied"})
                logging.info("Execution exited, contact replied", extra=self._log_extra(record, node))
                break

            self._step(record, workflow, node, contact, now)

        self.records.save(record)

    def _step(self, record: ExecutionRecord, workflow: Workflow, node: BaseNode, contact: Optional[Contact], now: datetime) -> None:
        step = StepContext(
            record=record,
            workflow=workflow,
            node=node,
            contact=contact,
            now=now,
            contacts=self.contacts,
            messenger=self.messenger,
            webhooks=self.webhooks,
            ai=self.ai,
            goals=self.goals,
            templates=self.templates,
            rng=self.rng,
        )
        try:
            result = get_node_handler(node.type)(step)
        except CollaboratorError as e:
            self._on_collaborator_failure(record, node, e, now)
            return
        except WorkflowError as e:
            self._fail(record, node.id, e.message, now=now, node_type=node.type)
            return
        except Exception as e:
            logging.exception("Unexpected node handler error", extra=self._log_extra(record, node))
            self._fail(record, node.id, f"{type(e).__name__}: {e}", now=now, node_type=node.type)
            return

        self.retry_handler.reset_retry_count(record, node.id)
        self._append_history(record, node, result.outcome, now, result.detail)
        logging.info("Node executed", extra={**self._log_extra(record, node), "outcome": result.outcome})

        if result.complete:
            self._complete(record, now)
            return
        if result.resume_at is not None or result.waiting_for is not None:
            self._sleep(record, workflow, node, result)
            return
        try:
            self._advance(record, workflow, node, result)
        except RoutingError as e:
            self._fail(record, node.id, e.message, now=now, node_type=node.type)
            return
        if record.current_node_id is None:
            self._complete(record, now)

    def _next_node_id(self, workflow: Workflow, node: BaseNode, result: NodeResult, fallback_default: bool = False) -> Optional[str]:
        edges = workflow.outgoing(node.id)
        if result.handle is not None:
            matching = [e for e in edges if e.source_handle == result.handle]
            if not matching and fallback_default:
                matching = [e for e in edges if e.source_handle != WAIT_TIMEOUT_HANDLE]
        else:
            matching = [e for e in edges if e.source_handle != WAIT_TIMEOUT_HANDLE]
        if not matching:
            if result.require_edge:
                raise RoutingError(
                    f"'{node.label or node.id}' has no outgoing edge for '{result.handle}'",
                    node_id=node.id,
                    handle=result.handle,
                )
            return None
        return matching[0].target

    def _advance(self, record: ExecutionRecord, workflow: Workflow, node: BaseNode, result: NodeResult, fallback_default: bool = False) -> None:
        record.current_node_id = self._next_node_id(workflow, node, result, fallback_default)

    def _sleep(self, record: ExecutionRecord, workflow: Workflow, node: BaseNode, result: NodeResult) -> None:
        if result.advance:
            self._advance(record, workflow, node, result)
        record.status = ExecutionStatus.WAITING
        record.scheduled_resume_at = result.resume_at
        record.waiting_for = result.waiting_for
        if result.resume_at is not None:
            self.scheduler.schedule(record.id, result.resume_at)
        logging.info("Execution waiting", extra={
            **self._log_extra(record, node),
            "resume_at": result.resume_at.isoformat() if result.resume_at else None,
            "waiting_for": result.waiting_for,
        })

    def _on_collaborator_failure(self, record: ExecutionRecord, node: BaseNode, error: CollaboratorError, now: datetime) -> None:
        should_retry, delay = self.retry_handler.should_retry_node(record, node.id, error.task_error, retry_limit(node))
        if not should_retry:
            self._fail(record, node.id, error.message, now=now, detail=error.task_error.to_dict(), node_type=node.type)
            return

        resume_at = now + timedelta(seconds=delay)
        self._append_history(record, node, "retry_scheduled", now, {
            "attempt": self.retry_handler.get_retry_count(record, node.id),
            "delay_seconds": delay,
            "error": error.task_error.to_dict(),
        })
        record.status = ExecutionStatus.WAITING
        record.scheduled_resume_at = resume_at
        self.scheduler.schedule(record.id, resume_at)

    def _complete(self, record: ExecutionRecord, now: datetime) -> None:
        record.status = ExecutionStatus.COMPLETED
        record.current_node_id = None
        record.completed_at = now
        logging.info("Execution completed", extra={
            "execution_id": record.id,
            "workflow_id": record.workflow_id,
            "contact_id": record.contact_id,
        })

    def _fail(
        self,
        record: ExecutionRecord,
        node_id: Optional[str],
        message: str,
        now: Optional[datetime] = None,
        detail: Optional[dict] = None,
        node_type: str = "",
    ) -> None:
        now = now or self.clock()
        record.status = ExecutionStatus.FAILED
        record.error_message = message
        record.error_node_id = node_id
        record.completed_at = now
        record.history.append(HistoryEntry(
            node_id=node_id or "",
            node_type=node_type,
            outcome="failed",
            at=now,
            detail={"error": message, **(detail or {})},
        ))
        logging.error("Execution failed", extra={
            "execution_id": record.id,
            "workflow_id": record.workflow_id,
            "contact_id": record.contact_id,
            "node_id": node_id,
            "error": message,
        })

    def _append_history(self, record: ExecutionRecord, node: Optional[BaseNode], outcome: str, now: datetime, detail: Optional[dict] = None) -> None:
        record.history.append(HistoryEntry(
            node_id=node.id if node is not None else "",
            node_type=node.type if node is not None else "",
            outcome=outcome,
            at=now,
            detail=detail or {},
        ))

    def _log_extra(self, record: ExecutionRecord, node: BaseNode) -> dict:
        return {
            "execution_id": record.id,
            "workflow_id": record.workflow_id,
            "contact_id": record.contact_id,
            "node_id": node.id,
            "node_type": node.type,
        }
