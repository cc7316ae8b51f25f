"""Condition evaluation against contact data and execution context."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from shared.node_configs import ConditionClause, ConditionConfig
from shared.types import Contact

CONTACT_FIELD_ALIASES = {
    "contact_status": "status",
    "contact_source": "source",
    "last_message_date": "last_message_at",
}


def lookup_path(data: Dict[str, Any], path: str) -> Any:
    """Reads ``a.b.c`` from nested dicts; missing segments give None."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def lookup_field(name: str, contact: Optional[Contact], context: Dict[str, Any]) -> Any:
    """Contact attribute, then custom field, then execution context variable."""
    attribute = CONTACT_FIELD_ALIASES.get(name, name)
    if contact is not None:
        if attribute in Contact.model_fields:
            return getattr(contact, attribute)
        if name in contact.custom_fields:
            return contact.custom_fields[name]
    if name in context:
        return context[name]
    return lookup_path(context, name)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (TypeError, ValueError):
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, dict)) and not value)


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        return any(_equals(item, expected) for item in actual)
    if isinstance(actual, bool) or isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    actual_number, expected_number = _as_number(actual), _as_number(expected)
    if actual_number is not None and expected_number is not None:
        return actual_number == expected_number
    if actual is None:
        return _is_empty(expected)
    return str(actual) == str(expected)


def _contains(actual: Any, expected: Any) -> bool:
    needle = str(expected).lower()
    if isinstance(actual, list):
        return any(str(item).lower() == needle for item in actual)
    if actual is None:
        return False
    return needle in str(actual).lower()


def _compare(actual: Any, expected: Any, now: datetime) -> Optional[float]:
    """Returns actual - expected, or None when the two are not comparable."""
    if isinstance(actual, datetime) or (_as_number(expected) is None and _as_datetime(expected) is not None):
        actual_moment = _as_datetime(actual)
        if actual_moment is None:
            return None
        expected_number = _as_number(expected)
        if expected_number is not None:
            days_since = (now - actual_moment).total_seconds() / 86400
            return days_since - expected_number
        expected_moment = _as_datetime(expected)
        if expected_moment is None:
            return None
        return (actual_moment - expected_moment).total_seconds()
    actual_number, expected_number = _as_number(actual), _as_number(expected)
    if actual_number is None or expected_number is None:
        return None
    return actual_number - expected_number


def apply_operator(operator: str, actual: Any, expected: Any, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    if operator == "equals":
        return _equals(actual, expected)
    if operator == "not_equals":
        return not _equals(actual, expected)
    if operator == "contains":
        return _contains(actual, expected)
    if operator == "not_contains":
        return not _contains(actual, expected)
    if operator in ("greater_than", "less_than"):
        difference = _compare(actual, expected, now)
        if difference is None:
            return False
        return difference > 0 if operator == "greater_than" else difference < 0
    if operator == "is_empty":
        return _is_empty(actual)
    if operator == "is_not_empty":
        return not _is_empty(actual)
    return False


def _resolve_operand(clause: ConditionClause, contact: Optional[Contact], context: Dict[str, Any]) -> Tuple[Any, Any]:
    if clause.field == "tag":
        tags = [t.lower() for t in contact.tags] if contact is not None else []
        expected = clause.value.lower() if isinstance(clause.value, str) else clause.value
        return tags, expected

    if clause.field == "custom_field":
        name, expected = clause.field_name, clause.value
        if not name and isinstance(expected, str) and ":" in expected:
            name, expected = expected.split(":", 1)
        custom_fields = contact.custom_fields if contact is not None else {}
        return custom_fields.get(name), expected

    return lookup_field(clause.field, contact, context), clause.value


def evaluate_clause(
    clause: ConditionClause,
    contact: Optional[Contact],
    context: Dict[str, Any],
    now: Optional[datetime] = None,
) -> bool:
    actual, expected = _resolve_operand(clause, contact, context)
    return apply_operator(clause.operator, actual, expected, now)


def evaluate_condition(
    config: ConditionConfig,
    contact: Optional[Contact],
    context: Dict[str, Any],
    now: Optional[datetime] = None,
) -> bool:
    """Evaluates the primary clause and chained clauses strictly left to right.

    The logical operator stored on a clause joins it to the clause after it;
    there is no operator precedence.
    """
    result = evaluate_clause(config, contact, context, now)
    previous: ConditionClause = config
    for clause in config.conditions:
        outcome = evaluate_clause(clause, contact, context, now)
        if (previous.logical_operator or "AND") == "OR":
            result = result or outcome
        else:
            result = result and outcome
        previous = clause
    return result
