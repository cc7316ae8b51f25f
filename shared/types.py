"""Shared types for the builder, the execution engine and the API."""

import copy
import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union
from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel
from shared.constants import DEFAULT_BUSINESS_DAYS, DEFAULT_BUSINESS_HOURS_END, DEFAULT_BUSINESS_HOURS_START, DEFAULT_TIMEZONE
from shared.exceptions import GraphError
from shared.node_configs import (
    ActionConfig,
    AIConfig,
    ConditionConfig,
    DelayConfig,
    GoalConfig,
    MessageConfig,
    SplitConfig,
    TriggerConfig,
    TriggerEventType,
    WaitUntilConfig,
    WebhookConfig,
)
from shared.utils import generate_execution_id, generate_node_id, utc_now


class NodeType(str, Enum):
    TRIGGER = "trigger"
    MESSAGE = "message"
    DELAY = "delay"
    CONDITION = "condition"
    ACTION = "action"
    WAIT_UNTIL = "wait_until"
    SPLIT = "split"
    WEBHOOK = "webhook"
    AI = "ai"
    GOAL = "goal"


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


WORKFLOW_TRANSITIONS = {
    WorkflowStatus.DRAFT: {WorkflowStatus.ACTIVE, WorkflowStatus.ARCHIVED},
    WorkflowStatus.ACTIVE: {WorkflowStatus.PAUSED, WorkflowStatus.ARCHIVED},
    WorkflowStatus.PAUSED: {WorkflowStatus.ACTIVE, WorkflowStatus.ARCHIVED},
    WorkflowStatus.ARCHIVED: set(),
}


class ExecutionStatus(str, Enum):
    ACTIVE = "active"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    EXITED = "exited"


TERMINAL_STATUSES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.EXITED}


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Position(ApiModel):
    x: float = 0
    y: float = 0


class BaseNode(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    label: str = ""
    description: Optional[str] = None
    position: Position = Field(default_factory=Position)


class TriggerNode(BaseNode):
    type: Literal["trigger"] = "trigger"
    config: TriggerConfig = Field(default_factory=TriggerConfig)


class MessageNode(BaseNode):
    type: Literal["message"] = "message"
    config: MessageConfig = Field(default_factory=MessageConfig)


class DelayNode(BaseNode):
    type: Literal["delay"] = "delay"
    config: DelayConfig = Field(default_factory=DelayConfig)


class ConditionNode(BaseNode):
    type: Literal["condition"] = "condition"
    config: ConditionConfig = Field(default_factory=ConditionConfig)


class ActionNode(BaseNode):
    type: Literal["action"] = "action"
    config: ActionConfig = Field(default_factory=ActionConfig)


class WaitUntilNode(BaseNode):
    type: Literal["wait_until"] = "wait_until"
    config: WaitUntilConfig = Field(default_factory=WaitUntilConfig)


class SplitNode(BaseNode):
    type: Literal["split"] = "split"
    config: SplitConfig = Field(default_factory=SplitConfig)


class WebhookNode(BaseNode):
    type: Literal["webhook"] = "webhook"
    config: WebhookConfig = Field(default_factory=WebhookConfig)


class AINode(BaseNode):
    type: Literal["ai"] = "ai"
    config: AIConfig = Field(default_factory=AIConfig)


class GoalNode(BaseNode):
    type: Literal["goal"] = "goal"
    config: GoalConfig = Field(default_factory=GoalConfig)


Node = Annotated[
    Union[
        TriggerNode,
        MessageNode,
        DelayNode,
        ConditionNode,
        ActionNode,
        WaitUntilNode,
        SplitNode,
        WebhookNode,
        AINode,
        GoalNode,
    ],
    Field(discriminator="type"),
]

NODE_CLASSES: Dict[str, Type[BaseNode]] = {
    NodeType.TRIGGER.value: TriggerNode,
    NodeType.MESSAGE.value: MessageNode,
    NodeType.DELAY.value: DelayNode,
    NodeType.CONDITION.value: ConditionNode,
    NodeType.ACTION.value: ActionNode,
    NodeType.WAIT_UNTIL.value: WaitUntilNode,
    NodeType.SPLIT.value: SplitNode,
    NodeType.WEBHOOK.value: WebhookNode,
    NodeType.AI.value: AINode,
    NodeType.GOAL.value: GoalNode,
}


class Edge(ApiModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: Optional[str] = None


class WorkflowGraph(ApiModel):
    """Nodes and edges of one workflow; the unit snapshotted by undo/redo."""

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[BaseNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_nodes(self) -> List[TriggerNode]:
        return [n for n in self.nodes if n.type == NodeType.TRIGGER.value]

    def outgoing(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def copy_graph(self) -> "WorkflowGraph":
        return WorkflowGraph(nodes=copy.deepcopy(self.nodes), edges=copy.deepcopy(self.edges))

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_json_string(self) -> str:
        return json.dumps(self.to_json(), sort_keys=True)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "WorkflowGraph":
        return cls.model_validate({"nodes": data.get("nodes", []), "edges": data.get("edges", [])})


class BusinessHours(ApiModel):
    start: str = DEFAULT_BUSINESS_HOURS_START
    end: str = DEFAULT_BUSINESS_HOURS_END
    days: List[int] = Field(default_factory=lambda: list(DEFAULT_BUSINESS_DAYS))


class WorkflowSettings(ApiModel):
    allow_reentry: bool = False
    max_executions_per_contact: int = 1
    stop_on_reply: bool = False
    max_contacts_per_day: Optional[int] = None
    timezone: str = DEFAULT_TIMEZONE
    business_hours: BusinessHours = Field(default_factory=BusinessHours)


class Workflow(WorkflowGraph):
    id: str
    organization_id: str = ""
    name: str = "Untitled Workflow"
    description: str = ""
    type: Literal["drip_campaign", "broadcast", "automation", "custom"] = "automation"
    status: WorkflowStatus = WorkflowStatus.DRAFT
    version: int = 1
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def create(cls, name: str, workflow_id: str, organization_id: str = "", **fields) -> "Workflow":
        """New draft workflow holding a single default trigger node."""
        trigger = TriggerNode(id=generate_node_id(NodeType.TRIGGER.value), label="Trigger", position=Position(x=250, y=50))
        return cls(id=workflow_id, organization_id=organization_id, name=name, nodes=[trigger], **fields)

    def transition_to(self, status: WorkflowStatus) -> "Workflow":
        status = WorkflowStatus(status)
        if status not in WORKFLOW_TRANSITIONS[self.status]:
            raise GraphError(
                f"Cannot change workflow status from {self.status.value} to {status.value}",
                workflow_id=self.id,
            )
        return self.model_copy(update={"status": status, "updated_at": utc_now()})

    def graph(self) -> WorkflowGraph:
        return WorkflowGraph(nodes=copy.deepcopy(self.nodes), edges=copy.deepcopy(self.edges))

    def with_graph(self, graph: WorkflowGraph) -> "Workflow":
        return self.model_copy(update={
            "nodes": copy.deepcopy(graph.nodes),
            "edges": copy.deepcopy(graph.edges),
            "updated_at": utc_now(),
        })

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class HistoryEntry(ApiModel):
    node_id: str
    node_type: str
    outcome: str
    at: datetime = Field(default_factory=utc_now)
    detail: Dict[str, Any] = Field(default_factory=dict)


class ExecutionRecord(ApiModel):
    id: str = Field(default_factory=generate_execution_id)
    workflow_id: str
    workflow_version: int = 1
    contact_id: str
    organization_id: str = ""
    current_node_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.ACTIVE
    context: Dict[str, Any] = Field(default_factory=dict)
    scheduled_resume_at: Optional[datetime] = None
    waiting_for: Optional[Dict[str, Any]] = None
    retry_counts: Dict[str, int] = Field(default_factory=dict)
    history: List[HistoryEntry] = Field(default_factory=list)
    enrolled_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    error_node_id: Optional[str] = None
    trigger_type: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class TriggerEvent(ApiModel):
    type: TriggerEventType
    organization_id: str
    contact_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


class Contact(ApiModel):
    id: str
    phone: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    lists: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    source: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_reply_at: Optional[datetime] = None


class ValidationIssue(ApiModel):
    severity: Severity
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None


class ValidationResult(ApiModel):
    issues: List[ValidationIssue] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]
