"""Per-node-type execution handlers."""

import base64
import hashlib
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from services.orchestrator.engine.collaborators import (
    AIClient,
    ContactStore,
    GoalTracker,
    MessageDispatcher,
    WebhookClient,
)
from services.orchestrator.engine.conditions import evaluate_condition, lookup_field
from services.orchestrator.engine.scheduling import compute_resume_at, resolve_wait_date
from services.orchestrator.engine.template import TemplateResolver, build_template_context
from services.orchestrator.engine.triggers import build_waiting_for, is_wait_satisfied
from shared.constants import CONDITION_HANDLES, MAX_RETRY_ATTEMPTS
from shared.exceptions import NodeExecutionError, RoutingError
from shared.node_configs import Branch, SplitConfig, WebhookConfig
from shared.types import BaseNode, Contact, ExecutionRecord, NodeType, Workflow


@dataclass
class NodeResult:
    """What a handler decided; the engine applies it to the record.

    ``handle`` picks the outgoing edge (``require_edge`` turns a missing edge
    into a RoutingError). ``resume_at``/``waiting_for`` put the record to
    sleep; ``advance`` says whether the pointer moves past this node first.
    """
    outcome: str
    handle: Optional[str] = None
    require_edge: bool = False
    advance: bool = True
    resume_at: Optional[datetime] = None
    waiting_for: Optional[Dict[str, Any]] = None
    complete: bool = False
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StepContext:
    record: ExecutionRecord
    workflow: Workflow
    node: BaseNode
    contact: Optional[Contact]
    now: datetime
    contacts: ContactStore
    messenger: MessageDispatcher
    webhooks: WebhookClient
    ai: AIClient
    goals: GoalTracker
    templates: TemplateResolver
    rng: random.Random

    @property
    def config(self):
        return self.node.config

    @property
    def variables(self) -> Dict[str, Any]:
        return self.record.context

    def template_context(self, extra: Optional[Dict[str, str]] = None, **kwargs) -> Dict[str, Any]:
        return build_template_context(self.contact, self.record.context, extra, **kwargs)

    def require_contact(self) -> Contact:
        if self.contact is None:
            raise NodeExecutionError(f"Contact '{self.record.contact_id}' not found", self.record.id, node_id=self.node.id)
        return self.contact


NodeHandler = Callable[[StepContext], NodeResult]
_handler_registry: Dict[str, NodeHandler] = {}


def register_node_handler(node_type: NodeType):
    def decorator(func: NodeHandler):
        _handler_registry[node_type.value] = func
        return func
    return decorator


def get_node_handler(node_type: str) -> NodeHandler:
    if node_type not in _handler_registry:
        raise ValueError(f"No handler for node type: {node_type}")
    return _handler_registry[node_type]


def list_node_handlers() -> List[str]:
    return list(_handler_registry.keys())


def retry_limit(node: BaseNode) -> int:
    """How many times a failed call on ``node`` may be retried."""
    if node.type == NodeType.WEBHOOK.value:
        return node.config.max_retries if node.config.retry_on_failure else 0
    if node.type == NodeType.AI.value:
        return MAX_RETRY_ATTEMPTS
    return 0


@register_node_handler(NodeType.TRIGGER)
def handle_trigger(step: StepContext) -> NodeResult:
    return NodeResult("triggered", detail={"trigger_type": step.config.trigger_type})


@register_node_handler(NodeType.MESSAGE)
def handle_message(step: StepContext) -> NodeResult:
    config = step.config
    contact = step.require_contact()
    context = step.template_context(
        config.variables,
        fallback_name=config.fallback_name,
        use_contact_name=config.use_contact_name,
    )

    if config.mode == "template":
        variables = step.templates.render_variables(config.variables, context)
        response = step.messenger.send_template(contact, config.template_id, config.template_language, variables)
        detail = {"mode": "template", "template_id": config.template_id}
    else:
        text = step.templates.render(config.custom_message, context)
        response = step.messenger.send_text(contact, text, config.media_url, config.media_type)
        detail = {"mode": "custom", "length": len(text)}

    message_id = (response or {}).get("message_id")
    step.variables[f"message_{step.node.id}"] = {"sent": True, "message_id": message_id}
    detail["message_id"] = message_id
    return NodeResult("sent", detail=detail)


@register_node_handler(NodeType.DELAY)
def handle_delay(step: StepContext) -> NodeResult:
    config = step.config
    resume_at = compute_resume_at(
        step.now,
        config.amount,
        config.unit,
        business_hours_only=config.business_hours_only,
        skip_weekends=config.skip_weekends,
        specific_time=config.specific_time,
        settings=step.workflow.settings,
    )
    return NodeResult("delayed", resume_at=resume_at, detail={"resume_at": resume_at.isoformat()})


@register_node_handler(NodeType.WAIT_UNTIL)
def handle_wait_until(step: StepContext) -> NodeResult:
    config = step.config
    settings = step.workflow.settings

    if config.event_type == "specific_date":
        target = resolve_wait_date(config.date, config.time, settings)
        if target <= step.now:
            return NodeResult("date_reached", detail={"date": target.isoformat()})
        return NodeResult("waiting_for_date", resume_at=target, detail={"resume_at": target.isoformat()})

    if is_wait_satisfied(config, step.contact):
        return NodeResult("condition_met", detail={"event_type": config.event_type})

    timeout_at = None
    if config.timeout_enabled and config.timeout_amount:
        timeout_at = compute_resume_at(
            step.now,
            config.timeout_amount,
            config.timeout_unit,
            business_hours_only=config.business_hours_only,
            skip_weekends=config.skip_weekends,
            settings=settings,
        )
    detail = {"event_type": config.event_type}
    if timeout_at is not None:
        detail["timeout_at"] = timeout_at.isoformat()
    return NodeResult(
        "waiting_for_event",
        advance=False,
        resume_at=timeout_at,
        waiting_for=build_waiting_for(step.node.id, config),
        detail=detail,
    )


@register_node_handler(NodeType.CONDITION)
def handle_condition(step: StepContext) -> NodeResult:
    result = evaluate_condition(step.config, step.contact, step.variables, step.now)
    step.variables[f"condition_{step.node.id}"] = result
    handle = CONDITION_HANDLES[0] if result else CONDITION_HANDLES[1]
    return NodeResult(handle, handle=handle, require_edge=True, detail={"result": result})


def percentage_bucket(workflow_id: str, node_id: str, contact_id: str) -> float:
    """Stable position in [0, 100) for a contact at a split node."""
    digest = hashlib.sha256(f"{workflow_id}:{node_id}:{contact_id}".encode("utf-8")).hexdigest()
    return (int(digest[:8], 16) % 10000) / 100


def _pick_by_position(branches: List[Branch], position: float) -> Branch:
    cumulative = 0.0
    for branch in branches:
        cumulative += branch.percentage
        if position < cumulative:
            return branch
    return branches[-1]


def choose_branch(step: StepContext, config: SplitConfig) -> Branch:
    if not config.branches:
        raise RoutingError("Split has no branches", step.record.id, node_id=step.node.id)

    if config.split_type == "percentage":
        bucket = percentage_bucket(step.workflow.id, step.node.id, step.record.contact_id)
        return _pick_by_position(config.branches, bucket)

    if config.split_type == "random":
        total = sum(b.percentage for b in config.branches)
        if total <= 0:
            return step.rng.choice(config.branches)
        return _pick_by_position(config.branches, step.rng.random() * total)

    value = lookup_field(config.field_name or "", step.contact, step.variables)
    wanted = "" if value is None else str(value).strip().lower()
    for branch in config.branches:
        if branch.value and branch.value.strip().lower() == wanted:
            return branch
    for branch in config.branches:
        if not branch.value and branch.label.strip().lower() == wanted and wanted:
            return branch
    for branch in config.branches:
        if not branch.value:
            return branch
    raise RoutingError(
        f"No split branch matches {config.field_name}={value!r}",
        step.record.id,
        node_id=step.node.id,
    )


@register_node_handler(NodeType.SPLIT)
def handle_split(step: StepContext) -> NodeResult:
    branch = choose_branch(step, step.config)
    step.variables[f"split_{step.node.id}"] = branch.id
    return NodeResult(
        "branch_selected",
        handle=branch.id,
        require_edge=True,
        detail={"branch_id": branch.id, "split_type": step.config.split_type},
    )


@register_node_handler(NodeType.ACTION)
def handle_action(step: StepContext) -> NodeResult:
    config = step.config
    contact = step.require_contact()
    detail: Dict[str, Any] = {"action_type": config.action_type}

    if config.action_type == "add_tag":
        step.contacts.add_tags(contact.id, config.tag_ids)
        detail["tag_ids"] = config.tag_ids
    elif config.action_type == "remove_tag":
        step.contacts.remove_tags(contact.id, config.tag_ids)
        detail["tag_ids"] = config.tag_ids
    elif config.action_type == "update_field":
        value = step.templates.render(config.field_value, step.template_context())
        step.contacts.update_field(contact.id, config.field_name, value)
        detail.update({"field_name": config.field_name, "field_value": value})
    elif config.action_type == "add_to_list":
        step.contacts.add_to_list(contact.id, config.list_id)
        detail["list_id"] = config.list_id
    elif config.action_type == "remove_from_list":
        step.contacts.remove_from_list(contact.id, config.list_id)
        detail["list_id"] = config.list_id
    elif config.action_type == "send_notification":
        message = step.templates.render(config.notification_message, step.template_context())
        step.messenger.notify(config.notification_email, message, {"contact_id": contact.id, "workflow_id": step.workflow.id})
        detail["notification_email"] = config.notification_email

    step.variables[f"action_{step.node.id}"] = detail
    return NodeResult("applied", detail=detail)


def build_webhook_headers(config: WebhookConfig, headers: Dict[str, str]) -> Dict[str, str]:
    headers = dict(headers)
    if config.auth_type == "bearer":
        headers["Authorization"] = f"Bearer {config.auth_token}"
    elif config.auth_type == "basic":
        credentials = f"{config.auth_username}:{config.auth_password}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(credentials).decode('ascii')}"
    elif config.auth_type == "api_key":
        headers[config.auth_api_key_header] = config.auth_api_key
    return headers


@register_node_handler(NodeType.WEBHOOK)
def handle_webhook(step: StepContext) -> NodeResult:
    config = step.config
    context = step.template_context()
    url = step.templates.render(config.url, context)
    body = None if config.method == "GET" else step.templates.render_body(config.body, context)

    headers = build_webhook_headers(config, step.templates.resolve(config.headers, context))
    response = step.webhooks.call(config.method, url, headers, body, config.timeout_seconds)

    if config.save_response and config.response_field:
        step.variables[config.response_field] = response
    step.variables[f"webhook_{step.node.id}"] = {"status": "success"}
    return NodeResult("called", detail={"method": config.method, "url": url})


@register_node_handler(NodeType.AI)
def handle_ai(step: StepContext) -> NodeResult:
    config = step.config
    message = step.variables.get("lastMessage")
    if not message:
        message = step.contacts.last_inbound_message(step.record.contact_id) or ""

    result = step.ai.run(config.action, config, message)
    step.variables[f"ai_{step.node.id}"] = result
    if config.result_field:
        step.variables[config.result_field] = result

    if config.action == "categorize" and config.category_field and result.get("category"):
        step.contacts.update_field(step.record.contact_id, config.category_field, result["category"])
        step.variables[config.category_field] = result["category"]
    if config.action == "sentiment_analysis" and config.sentiment_field and result.get("sentiment"):
        step.contacts.update_field(step.record.contact_id, config.sentiment_field, result["sentiment"])
        step.variables[config.sentiment_field] = result["sentiment"]

    return NodeResult("analyzed", detail={"action": config.action})


@register_node_handler(NodeType.GOAL)
def handle_goal(step: StepContext) -> NodeResult:
    config = step.config
    if config.track_in_analytics:
        step.goals.record(step.workflow.id, step.record.id, step.record.contact_id, config)
    if config.notify_on_completion and config.notification_email:
        step.messenger.notify(
            config.notification_email,
            f"Goal '{config.goal_name}' reached",
            {"contact_id": step.record.contact_id, "workflow_id": step.workflow.id},
        )

    detail: Dict[str, Any] = {"goal_type": config.goal_type, "goal_name": config.goal_name}
    if config.goal_type == "revenue":
        detail.update({"revenue_amount": config.revenue_amount, "currency": config.currency})
    step.variables[f"goal_{step.node.id}"] = detail
    logging.info("Goal reached", extra={
        "execution_id": step.record.id,
        "workflow_id": step.workflow.id,
        "node_id": step.node.id,
        "goal_type": config.goal_type,
    })
    return NodeResult("goal_reached", complete=True, detail=detail)
