"""
Unit tests for condition evaluation and trigger matching.
"""

from datetime import datetime, timedelta, timezone
from services.orchestrator.engine.conditions import apply_operator, evaluate_condition, lookup_field
from services.orchestrator.engine.triggers import build_waiting_for, can_enroll, matches_trigger, matches_wait
from shared.node_configs import ConditionClause, ConditionConfig, TriggerConfig, WaitUntilConfig
from shared.types import Contact, ExecutionRecord, ExecutionStatus, TriggerEvent, WorkflowSettings

NOW = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


def contact(**fields):
    data = {"id": "c1", "name": "Ana", "tags": ["VIP", "newsletter"], "custom_fields": {"plan": "pro", "orders": 12}}
    data.update(fields)
    return Contact(**data)


def event(event_type, **data):
    return TriggerEvent(type=event_type, organization_id="org_1", contact_id="c1", data=data)


def test_equals_compares_numbers_numerically():
    assert apply_operator("equals", "10", 10.0)
    assert apply_operator("not_equals", "10", 11)
    assert not apply_operator("equals", "abc", "ABC")


def test_contains_is_case_insensitive():
    assert apply_operator("contains", "Premium Plan", "premium")
    assert apply_operator("not_contains", "Basic", "premium")
    assert not apply_operator("contains", None, "x")


def test_ordering_needs_comparable_values():
    assert apply_operator("greater_than", 12, "10")
    assert apply_operator("less_than", "2", 10)
    assert not apply_operator("greater_than", "abc", 10)


def test_emptiness():
    assert apply_operator("is_empty", None, "")
    assert apply_operator("is_empty", [], "")
    assert apply_operator("is_not_empty", "x", "")


def test_last_message_date_compares_days_since():
    config = ConditionConfig(field="last_message_date", operator="greater_than", value=3)
    stale = contact(last_message_at=NOW - timedelta(days=5))
    recent = contact(last_message_at=NOW - timedelta(days=1))

    assert evaluate_condition(config, stale, {}, NOW)
    assert not evaluate_condition(config, recent, {}, NOW)


def test_tag_condition_ignores_case():
    assert evaluate_condition(ConditionConfig(field="tag", operator="equals", value="vip"), contact(), {}, NOW)
    assert evaluate_condition(ConditionConfig(field="tag", operator="not_contains", value="blocked"), contact(), {}, NOW)


def test_custom_field_shorthand_value():
    config = ConditionConfig(field="custom_field", operator="equals", value="plan:pro")

    assert evaluate_condition(config, contact(), {}, NOW)


def test_chained_clauses_evaluate_left_to_right():
    """(true OR false) AND false is false; there is no AND-before-OR precedence"""
    config = ConditionConfig(
        field="tag", operator="equals", value="vip", logical_operator="OR",
        conditions=[
            ConditionClause(field="custom_field", field_name="plan", operator="equals", value="free", logical_operator="AND"),
            ConditionClause(field="custom_field", field_name="orders", operator="greater_than", value=100),
        ],
    )

    assert not evaluate_condition(config, contact(), {}, NOW)


def test_missing_logical_operator_defaults_to_and():
    config = ConditionConfig(
        field="tag", operator="equals", value="vip",
        conditions=[ConditionClause(field="custom_field", field_name="orders", operator="greater_than", value=5)],
    )

    assert evaluate_condition(config, contact(), {}, NOW)
    assert not evaluate_condition(config, contact(custom_fields={"orders": 1}), {}, NOW)


def test_operator_on_the_chained_clause_itself_does_not_join_it():
    """An OR stored only on the last clause has nothing after it to join"""
    config = ConditionConfig(
        field="tag", operator="equals", value="vip",
        conditions=[ConditionClause(field="custom_field", field_name="plan", operator="equals", value="free", logical_operator="OR")],
    )

    assert not evaluate_condition(config, contact(), {}, NOW)
    assert evaluate_condition(config.model_copy(update={"logical_operator": "OR"}), contact(), {}, NOW)


def test_lookup_field_order():
    context = {"score": 7, "trigger": {"tagId": "lead"}}

    assert lookup_field("email", contact(email="ana@example.com"), context) == "ana@example.com"
    assert lookup_field("plan", contact(), context) == "pro"
    assert lookup_field("score", contact(), context) == 7
    assert lookup_field("trigger.tagId", None, context) == "lead"
    assert lookup_field("nothing", contact(), context) is None


def test_tag_trigger_matches_configured_tags():
    config = TriggerConfig(trigger_type="tag_applied", tag_ids=["lead", "trial"])

    assert matches_trigger(config, event("tag_applied", tagId="lead"))
    assert matches_trigger(config, event("tag_applied", tag_id="trial"))
    assert not matches_trigger(config, event("tag_applied", tagId="other"))
    assert not matches_trigger(config, event("contact_added"))


def test_field_change_trigger():
    config = TriggerConfig(trigger_type="custom_field_changed", field_name="plan", field_value="pro")

    assert matches_trigger(config, event("custom_field_changed", fieldName="plan", fieldValue="pro"))
    assert not matches_trigger(config, event("custom_field_changed", fieldName="plan", fieldValue="free"))


def test_date_time_trigger_only_matches_its_tick():
    config = TriggerConfig(trigger_type="date_time", scheduled_date="2024-02-01")

    assert matches_trigger(config, event("date_time", workflowId="wf_1"), "wf_1")
    assert not matches_trigger(config, event("date_time", workflowId="wf_2"), "wf_1")
    assert not matches_trigger(config, event("date_time"), None)


def test_reentry_rules():
    finished = ExecutionRecord(workflow_id="wf", contact_id="c1", status=ExecutionStatus.COMPLETED)
    running = ExecutionRecord(workflow_id="wf", contact_id="c1", status=ExecutionStatus.WAITING)

    assert can_enroll(WorkflowSettings(), [])
    assert not can_enroll(WorkflowSettings(), [finished])
    assert can_enroll(WorkflowSettings(allow_reentry=True, max_executions_per_contact=2), [finished])
    assert not can_enroll(WorkflowSettings(allow_reentry=True, max_executions_per_contact=5), [finished, running])
    assert not can_enroll(WorkflowSettings(allow_reentry=True, max_executions_per_contact=1), [finished])


def test_field_wait_matches_expected_value():
    waiting_for = build_waiting_for("w1", WaitUntilConfig(event_type="field_changed", field_name="plan", expected_value="pro"))

    assert waiting_for == {"nodeId": "w1", "eventType": "field_changed", "fieldName": "plan", "expectedValue": "pro"}
    assert matches_wait(waiting_for, event("custom_field_changed", fieldName="plan", fieldValue="pro"))
    assert not matches_wait(waiting_for, event("custom_field_changed", fieldName="plan", fieldValue="free"))
    assert not matches_wait(waiting_for, event("tag_applied", tagId="pro"))


def test_message_wait_matches_any_reply():
    waiting_for = build_waiting_for("w1", WaitUntilConfig(event_type="message_received"))

    assert matches_wait(waiting_for, event("contact_replied", message="yes"))
