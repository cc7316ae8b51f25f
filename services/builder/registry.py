"""Node type registry.

One place binds every node kind to its config model, default config, editor
rules, palette entry and execution handler name, so the four can't drift.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Type
from pydantic import BaseModel
from services.builder import config_rules
from shared.node_configs import (
    ActionConfig,
    AIConfig,
    ConditionConfig,
    DelayConfig,
    GoalConfig,
    MessageConfig,
    SplitConfig,
    TriggerConfig,
    WaitUntilConfig,
    WebhookConfig,
)
from shared.types import NodeType

ConfigRule = Callable[[BaseModel], Dict[str, str]]


@dataclass(frozen=True)
class PaletteItem:
    type: NodeType
    label: str
    description: str
    icon: str
    category: str
    max_instances: Optional[int] = None


@dataclass(frozen=True)
class NodeTypeSpec:
    type: NodeType
    config_model: Type[BaseModel]
    default_label: str
    palette: PaletteItem
    validate: ConfigRule
    handler: str
    config_factory: Callable[[], BaseModel] = field(repr=False, default=None)

    def default_config(self) -> BaseModel:
        return self.config_factory()


_node_registry: Dict[NodeType, NodeTypeSpec] = {}


def register_node_type(
    node_type: NodeType,
    config_model: Type[BaseModel],
    label: str,
    description: str,
    icon: str,
    category: str,
    validate: ConfigRule,
    handler: str,
    max_instances: Optional[int] = None,
):
    """Registers the decorated default-config factory for ``node_type``."""
    def decorator(func: Callable[[], BaseModel]):
        _node_registry[node_type] = NodeTypeSpec(
            type=node_type,
            config_model=config_model,
            default_label=label,
            palette=PaletteItem(node_type, label, description, icon, category, max_instances),
            validate=validate,
            handler=handler,
            config_factory=func,
        )
        return func
    return decorator


def get_node_spec(node_type) -> NodeTypeSpec:
    try:
        return _node_registry[NodeType(node_type)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown node type: {node_type}")


def default_config(node_type) -> BaseModel:
    return get_node_spec(node_type).default_config()


def list_node_types() -> List[NodeType]:
    return list(_node_registry.keys())


def palette() -> List[PaletteItem]:
    return [spec.palette for spec in _node_registry.values()]


def check_registry_complete(handlers: Iterable[str]) -> None:
    """Raises if any node type lacks a config, default, validator or handler."""
    handlers = set(handlers)
    missing = []
    for node_type in NodeType:
        spec = _node_registry.get(node_type)
        if spec is None:
            missing.append(f"{node_type.value}: not registered")
            continue
        if not isinstance(spec.default_config(), spec.config_model):
            missing.append(f"{node_type.value}: default config is not a {spec.config_model.__name__}")
        if spec.validate is None:
            missing.append(f"{node_type.value}: no config validator")
        if spec.handler not in handlers:
            missing.append(f"{node_type.value}: no execution handler '{spec.handler}'")
    if missing:
        raise ValueError("Node registry incomplete: " + "; ".join(missing))


@register_node_type(
    NodeType.TRIGGER, TriggerConfig, "Trigger", "Start the workflow when an event happens",
    icon="zap", category="trigger", validate=config_rules.trigger_rules, handler="trigger", max_instances=1,
)
def default_trigger_config() -> TriggerConfig:
    return TriggerConfig(trigger_type="contact_added")


@register_node_type(
    NodeType.MESSAGE, MessageConfig, "Send Message", "Send a WhatsApp message",
    icon="message-square", category="action", validate=config_rules.message_rules, handler="message",
)
def default_message_config() -> MessageConfig:
    return MessageConfig(mode="custom", custom_message="", use_contact_name=True, fallback_name="there")


@register_node_type(
    NodeType.DELAY, DelayConfig, "Delay", "Wait for a period of time",
    icon="clock", category="logic", validate=config_rules.delay_rules, handler="delay",
)
def default_delay_config() -> DelayConfig:
    return DelayConfig(amount=1, unit="days")


@register_node_type(
    NodeType.CONDITION, ConditionConfig, "Condition", "Branch on contact data",
    icon="git-branch", category="logic", validate=config_rules.condition_rules, handler="condition",
)
def default_condition_config() -> ConditionConfig:
    return ConditionConfig(field="tag", operator="equals", value="")


@register_node_type(
    NodeType.ACTION, ActionConfig, "Action", "Update tags, fields or lists",
    icon="settings", category="action", validate=config_rules.action_rules, handler="action",
)
def default_action_config() -> ActionConfig:
    return ActionConfig(action_type="add_tag")


@register_node_type(
    NodeType.WAIT_UNTIL, WaitUntilConfig, "Wait Until", "Wait for an event or a date",
    icon="hourglass", category="logic", validate=config_rules.wait_until_rules, handler="wait_until",
)
def default_wait_until_config() -> WaitUntilConfig:
    return WaitUntilConfig(event_type="tag_applied")


@register_node_type(
    NodeType.SPLIT, SplitConfig, "A/B Split", "Split contacts across branches",
    icon="shuffle", category="logic", validate=config_rules.split_rules, handler="split",
)
def default_split_config() -> SplitConfig:
    return SplitConfig(split_type="percentage")


@register_node_type(
    NodeType.WEBHOOK, WebhookConfig, "Webhook", "Call an external HTTP endpoint",
    icon="globe", category="action", validate=config_rules.webhook_rules, handler="webhook",
)
def default_webhook_config() -> WebhookConfig:
    return WebhookConfig(method="POST", headers={"Content-Type": "application/json"})


@register_node_type(
    NodeType.AI, AIConfig, "AI", "Analyze or answer messages with AI",
    icon="sparkles", category="other", validate=config_rules.ai_rules, handler="ai",
)
def default_ai_config() -> AIConfig:
    return AIConfig(action="sentiment_analysis")


@register_node_type(
    NodeType.GOAL, GoalConfig, "Goal", "Mark the workflow goal as reached",
    icon="target", category="other", validate=config_rules.goal_rules, handler="goal",
)
def default_goal_config() -> GoalConfig:
    return GoalConfig(goal_type="conversion", goal_name="")
