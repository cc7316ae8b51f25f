"""Per-node-type configuration payloads.

Each node kind owns exactly one config model, so a ``delay`` node can never
carry webhook fields. JSON keys are camelCase to stay compatible with
workflows stored by the canvas; attributes are snake_case.
"""

from typing import Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from shared.constants import DEFAULT_AI_MODEL, DEFAULT_WEBHOOK_TIMEOUT_SECONDS

Scalar = Union[bool, int, float, str, None]

TriggerEventType = Literal[
    "contact_added",
    "tag_applied",
    "webhook_received",
    "date_time",
    "contact_replied",
    "custom_field_changed",
]
DelayUnit = Literal["minutes", "hours", "days", "weeks"]
ConditionOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "greater_than",
    "less_than",
    "is_empty",
    "is_not_empty",
]
LogicalOperator = Literal["AND", "OR"]
ActionType = Literal[
    "add_tag",
    "remove_tag",
    "update_field",
    "add_to_list",
    "remove_from_list",
    "send_notification",
]
WaitEventType = Literal[
    "tag_applied",
    "field_changed",
    "message_received",
    "specific_date",
    "webhook_received",
]
SplitType = Literal["random", "percentage", "field_based"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
AuthType = Literal["none", "bearer", "basic", "api_key"]
AIAction = Literal[
    "sentiment_analysis",
    "categorize",
    "extract_info",
    "generate_response",
    "translate",
]
GoalType = Literal["conversion", "engagement", "revenue", "custom"]
MediaType = Literal["image", "video", "document", "audio"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_dict(self) -> Dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class TriggerConfig(CamelModel):
    trigger_type: TriggerEventType = "contact_added"
    tag_ids: List[str] = Field(default_factory=list)
    list_ids: List[str] = Field(default_factory=list)
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    timezone: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    field_name: Optional[str] = None
    field_value: Optional[str] = None


class MessageConfig(CamelModel):
    mode: Literal["custom", "template"] = "custom"
    custom_message: Optional[str] = None
    template_id: Optional[str] = None
    template_language: str = "en"
    variables: Dict[str, str] = Field(default_factory=dict)
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    use_contact_name: bool = True
    fallback_name: str = "there"


class DelayConfig(CamelModel):
    amount: Union[int, float] = 1
    unit: DelayUnit = "days"
    business_hours_only: bool = False
    skip_weekends: bool = False
    specific_time: Optional[str] = None


class ConditionClause(CamelModel):
    field: str = "tag"
    field_name: Optional[str] = None
    operator: ConditionOperator = "equals"
    value: Scalar = ""
    logical_operator: Optional[LogicalOperator] = None


class ConditionConfig(ConditionClause):
    conditions: List[ConditionClause] = Field(default_factory=list)


class ActionConfig(CamelModel):
    action_type: ActionType = "add_tag"
    tag_ids: List[str] = Field(default_factory=list)
    field_name: Optional[str] = None
    field_value: Optional[str] = None
    list_id: Optional[str] = None
    notification_email: Optional[str] = None
    notification_message: Optional[str] = None


class WaitUntilConfig(CamelModel):
    event_type: WaitEventType = "tag_applied"
    tag_id: Optional[str] = None
    field_name: Optional[str] = None
    expected_value: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    webhook_url: Optional[str] = None
    timeout_enabled: bool = False
    timeout_amount: Optional[Union[int, float]] = None
    timeout_unit: DelayUnit = "days"
    business_hours_only: bool = False
    skip_weekends: bool = False


class Branch(CamelModel):
    id: str
    label: str = ""
    percentage: float = 0
    value: Optional[str] = None


class SplitConfig(CamelModel):
    split_type: SplitType = "percentage"
    field_name: Optional[str] = None
    branches: List[Branch] = Field(default_factory=lambda: [
        Branch(id="branch_a", label="Branch A", percentage=50),
        Branch(id="branch_b", label="Branch B", percentage=50),
    ])


class WebhookConfig(CamelModel):
    url: str = ""
    method: HttpMethod = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    auth_type: AuthType = "none"
    auth_token: Optional[str] = None
    auth_username: Optional[str] = None
    auth_password: Optional[str] = None
    auth_api_key: Optional[str] = None
    auth_api_key_header: Optional[str] = None
    retry_on_failure: bool = False
    max_retries: int = 3
    save_response: bool = False
    response_field: Optional[str] = None
    timeout_seconds: int = DEFAULT_WEBHOOK_TIMEOUT_SECONDS


class AIConfig(CamelModel):
    action: AIAction = "sentiment_analysis"
    model: str = DEFAULT_AI_MODEL
    temperature: float = 0.7
    max_tokens: int = 500
    categories: List[str] = Field(default_factory=list)
    category_field: Optional[str] = None
    sentiment_field: Optional[str] = None
    extraction_fields: List[str] = Field(default_factory=list)
    extraction_prompt: Optional[str] = None
    response_prompt: Optional[str] = None
    response_context: Optional[str] = None
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    result_field: Optional[str] = None


class GoalConfig(CamelModel):
    goal_type: GoalType = "conversion"
    goal_name: str = ""
    goal_description: Optional[str] = None
    revenue_amount: Optional[float] = None
    currency: str = "EUR"
    track_in_analytics: bool = True
    notify_on_completion: bool = False
    notification_email: Optional[str] = None
