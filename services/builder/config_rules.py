"""Required-field rules for each node config.

Every rule takes the parsed config model and returns ``{field: message}``;
an empty dict means the config is complete. Field keys use the camelCase
names of the form inputs.
"""

import re
from typing import Dict
from urllib.parse import urlparse
from shared.constants import (
    MAX_AI_MAX_TOKENS,
    MAX_AI_TEMPERATURE,
    MAX_WEBHOOK_RETRIES,
    MIN_AI_MAX_TOKENS,
    MIN_AI_TEMPERATURE,
    MIN_SPLIT_BRANCHES,
    MIN_WEBHOOK_RETRIES,
    PERCENTAGE_TOLERANCE,
)
from shared.node_configs import (
    ActionConfig,
    AIConfig,
    ConditionClause,
    ConditionConfig,
    DelayConfig,
    GoalConfig,
    MessageConfig,
    SplitConfig,
    TriggerConfig,
    WaitUntilConfig,
    WebhookConfig,
)

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
VALUELESS_OPERATORS = {"is_empty", "is_not_empty"}
PERCENTAGE_SPLITS = {"percentage", "random"}


def _blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def is_http_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_hhmm(value: str) -> bool:
    return bool(HHMM_PATTERN.match(value or ""))


def split_percentage_error(config: SplitConfig) -> str:
    """Returns the percentage-sum error message, or '' when the sum is fine."""
    if config.split_type not in PERCENTAGE_SPLITS:
        return ""
    total = sum(branch.percentage for branch in config.branches)
    if abs(total - 100) > PERCENTAGE_TOLERANCE:
        return f"Branch percentages must sum to 100% (currently {total:g}%)"
    return ""


def trigger_rules(config: TriggerConfig) -> Dict[str, str]:
    errors = {}
    if config.trigger_type == "tag_applied" and not config.tag_ids:
        errors["tagIds"] = "Select at least one tag"
    elif config.trigger_type == "date_time" and _blank(config.scheduled_date):
        errors["scheduledDate"] = "Scheduled date is required"
    elif config.trigger_type == "webhook_received" and _blank(config.webhook_url):
        errors["webhookUrl"] = "Webhook URL is required"
    elif config.trigger_type == "custom_field_changed" and _blank(config.field_name):
        errors["fieldName"] = "Field name is required"
    if config.scheduled_time and not is_hhmm(config.scheduled_time):
        errors["scheduledTime"] = "Time must use HH:MM format"
    return errors


def message_rules(config: MessageConfig) -> Dict[str, str]:
    errors = {}
    if config.mode == "custom" and _blank(config.custom_message):
        errors["customMessage"] = "Message text is required"
    if config.mode == "template" and _blank(config.template_id):
        errors["templateId"] = "Select a message template"
    if config.media_url and not is_http_url(config.media_url):
        errors["mediaUrl"] = "Media URL must be an http(s) URL"
    return errors


def delay_rules(config: DelayConfig) -> Dict[str, str]:
    errors = {}
    if config.amount <= 0:
        errors["amount"] = "Delay must be greater than 0"
    if config.specific_time and not is_hhmm(config.specific_time):
        errors["specificTime"] = "Time must use HH:MM format"
    return errors


def _clause_rules(clause: ConditionClause, prefix: str = "") -> Dict[str, str]:
    errors = {}
    if _blank(clause.field):
        errors[f"{prefix}field"] = "Field is required"
    if clause.field == "custom_field" and _blank(clause.field_name) and ":" not in str(clause.value or ""):
        errors[f"{prefix}fieldName"] = "Custom field name is required"
    if clause.operator not in VALUELESS_OPERATORS and _blank(clause.value):
        errors[f"{prefix}value"] = "Value is required"
    return errors


def condition_rules(config: ConditionConfig) -> Dict[str, str]:
    errors = _clause_rules(config)
    for index, clause in enumerate(config.conditions):
        errors.update(_clause_rules(clause, prefix=f"conditions.{index}."))
    return errors


def action_rules(config: ActionConfig) -> Dict[str, str]:
    errors = {}
    if config.action_type in ("add_tag", "remove_tag") and not config.tag_ids:
        errors["tagIds"] = "Select at least one tag"
    elif config.action_type == "update_field" and _blank(config.field_name):
        errors["fieldName"] = "Field name is required"
    elif config.action_type in ("add_to_list", "remove_from_list") and _blank(config.list_id):
        errors["listId"] = "Select a list"
    elif config.action_type == "send_notification" and _blank(config.notification_email):
        errors["notificationEmail"] = "Notification email is required"
    return errors


def wait_until_rules(config: WaitUntilConfig) -> Dict[str, str]:
    errors = {}
    if config.event_type == "tag_applied" and _blank(config.tag_id):
        errors["tagId"] = "Select a tag"
    elif config.event_type == "field_changed" and _blank(config.field_name):
        errors["fieldName"] = "Field name is required"
    elif config.event_type == "specific_date" and _blank(config.date):
        errors["date"] = "Date is required"
    elif config.event_type == "webhook_received" and _blank(config.webhook_url):
        errors["webhookUrl"] = "Webhook URL is required"
    if config.time and not is_hhmm(config.time):
        errors["time"] = "Time must use HH:MM format"
    if config.timeout_enabled and (config.timeout_amount is None or config.timeout_amount <= 0):
        errors["timeoutAmount"] = "Timeout must be greater than 0"
    return errors


def split_rules(config: SplitConfig, check_percentages: bool = True) -> Dict[str, str]:
    errors = {}
    if len(config.branches) < MIN_SPLIT_BRANCHES:
        errors["branches"] = f"At least {MIN_SPLIT_BRANCHES} branches are required"
    ids = [branch.id for branch in config.branches]
    if len(ids) != len(set(ids)):
        errors["branches"] = "Branch ids must be unique"
    if config.split_type == "field_based" and _blank(config.field_name):
        errors["fieldName"] = "Field name is required"
    if check_percentages:
        message = split_percentage_error(config)
        if message:
            errors["percentage"] = message
    return errors


def webhook_rules(config: WebhookConfig) -> Dict[str, str]:
    errors = {}
    if _blank(config.url):
        errors["url"] = "URL is required"
    elif not is_http_url(config.url):
        errors["url"] = "URL must be an absolute http(s) URL"
    if config.auth_type == "bearer" and _blank(config.auth_token):
        errors["authToken"] = "Bearer token is required"
    elif config.auth_type == "basic":
        if _blank(config.auth_username):
            errors["authUsername"] = "Username is required"
        if _blank(config.auth_password):
            errors["authPassword"] = "Password is required"
    elif config.auth_type == "api_key":
        if _blank(config.auth_api_key):
            errors["authApiKey"] = "API key is required"
        if _blank(config.auth_api_key_header):
            errors["authApiKeyHeader"] = "API key header is required"
    if config.retry_on_failure and not MIN_WEBHOOK_RETRIES <= config.max_retries <= MAX_WEBHOOK_RETRIES:
        errors["maxRetries"] = f"Max retries must be between {MIN_WEBHOOK_RETRIES} and {MAX_WEBHOOK_RETRIES}"
    if config.save_response and _blank(config.response_field):
        errors["responseField"] = "Response field is required"
    return errors


def ai_rules(config: AIConfig) -> Dict[str, str]:
    errors = {}
    if config.action == "categorize" and not config.categories:
        errors["categories"] = "Add at least one category"
    elif config.action == "extract_info" and _blank(config.extraction_prompt):
        errors["extractionPrompt"] = "Extraction prompt is required"
    elif config.action == "generate_response" and _blank(config.response_prompt):
        errors["responsePrompt"] = "Response prompt is required"
    elif config.action == "translate":
        if _blank(config.source_language):
            errors["sourceLanguage"] = "Source language is required"
        if _blank(config.target_language):
            errors["targetLanguage"] = "Target language is required"
    if not MIN_AI_TEMPERATURE <= config.temperature <= MAX_AI_TEMPERATURE:
        errors["temperature"] = f"Temperature must be between {MIN_AI_TEMPERATURE:g} and {MAX_AI_TEMPERATURE:g}"
    if not MIN_AI_MAX_TOKENS <= config.max_tokens <= MAX_AI_MAX_TOKENS:
        errors["maxTokens"] = f"Max tokens must be between {MIN_AI_MAX_TOKENS} and {MAX_AI_MAX_TOKENS}"
    return errors


def goal_rules(config: GoalConfig) -> Dict[str, str]:
    errors = {}
    if _blank(config.goal_name):
        errors["goalName"] = "Goal name is required"
    if config.goal_type == "revenue" and (config.revenue_amount is None or config.revenue_amount <= 0):
        errors["revenueAmount"] = "Revenue amount is required"
    if config.notify_on_completion and _blank(config.notification_email):
        errors["notificationEmail"] = "Notification email is required"
    return errors
