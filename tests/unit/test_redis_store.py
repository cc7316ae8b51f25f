"""
Unit tests for the orchestrator's Redis stores and resume scheduler.

Redis and Celery are mocked; assertions check the keys and commands issued.
"""

import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock, Mock, call
from services.orchestrator.infra.broker import CeleryScheduler
from services.orchestrator.infra.redis_store import (
    RedisContactStore,
    RedisExecutionStore,
    RedisGoalTracker,
    RedisWorkflowRepository,
)
from shared.logging_config import set_correlation_id
from shared.node_configs import GoalConfig
from shared.types import ExecutionRecord, ExecutionStatus, Workflow, WorkflowStatus
from shared.utils import utc_now

THIRTY_DAYS = 30 * 24 * 60 * 60


def redis_with_pipeline():
    redis_mock = MagicMock()
    pipe = MagicMock()
    redis_mock.pipeline.return_value = pipe
    return redis_mock, pipe


def test_daily_slot_reserved_under_limit():
    redis_mock = Mock()
    redis_mock.incr.return_value = 1
    store = RedisExecutionStore(redis_mock)

    assert store.reserve_daily_slot("wf_1", date(2024, 1, 10), 5)

    redis_mock.incr.assert_called_once_with("wf:wf_1:enrolled:2024-01-10")
    redis_mock.expire.assert_called_once_with("wf:wf_1:enrolled:2024-01-10", 172800)
    redis_mock.decr.assert_not_called()


def test_daily_slot_over_limit_is_given_back():
    """A refused reservation must not consume a slot"""
    redis_mock = Mock()
    redis_mock.incr.return_value = 6
    store = RedisExecutionStore(redis_mock)

    assert not store.reserve_daily_slot("wf_1", date(2024, 1, 10), 5)

    redis_mock.decr.assert_called_once_with("wf:wf_1:enrolled:2024-01-10")
    redis_mock.expire.assert_not_called()


def test_waiting_record_is_indexed_for_contact():
    redis_mock, pipe = redis_with_pipeline()
    record = ExecutionRecord(id="exec_1", workflow_id="wf_1", contact_id="c1", status=ExecutionStatus.WAITING)

    RedisExecutionStore(redis_mock).save(record)

    pipe.sadd.assert_any_call("exec:waiting:c1", "exec_1")
    pipe.sadd.assert_any_call("exec:index:wf_1:c1", "exec_1")
    pipe.srem.assert_not_called()
    pipe.execute.assert_called_once()


def test_finished_record_leaves_waiting_index():
    redis_mock, pipe = redis_with_pipeline()
    record = ExecutionRecord(id="exec_1", workflow_id="wf_1", contact_id="c1", status=ExecutionStatus.COMPLETED)

    RedisExecutionStore(redis_mock).save(record)

    pipe.srem.assert_called_once_with("exec:waiting:c1", "exec_1")


def test_record_waiting_past_thirty_days_outlives_its_resume():
    """A five week delay must still find its record when the resume fires"""
    redis_mock, pipe = redis_with_pipeline()
    resume_at = utc_now() + timedelta(weeks=5)
    record = ExecutionRecord(id="exec_1", workflow_id="wf_1", contact_id="c1",
                             status=ExecutionStatus.WAITING, scheduled_resume_at=resume_at)

    RedisExecutionStore(redis_mock).save(record)

    ttl = pipe.set.call_args.kwargs["ex"]
    assert ttl > timedelta(weeks=5).total_seconds()
    pipe.expire.assert_called_once_with("exec:index:wf_1:c1", ttl)


def test_open_ended_wait_has_no_expiry():
    redis_mock, pipe = redis_with_pipeline()
    record = ExecutionRecord(id="exec_1", workflow_id="wf_1", contact_id="c1",
                             status=ExecutionStatus.WAITING, waiting_for={"nodeId": "wait", "eventType": "contact_replied"})

    RedisExecutionStore(redis_mock).save(record)

    assert pipe.set.call_args.kwargs["ex"] is None
    pipe.persist.assert_called_once_with("exec:index:wf_1:c1")
    pipe.expire.assert_not_called()


def test_finished_record_expires_after_thirty_days():
    redis_mock, pipe = redis_with_pipeline()
    record = ExecutionRecord(id="exec_1", workflow_id="wf_1", contact_id="c1", status=ExecutionStatus.COMPLETED)

    RedisExecutionStore(redis_mock).save(record)

    assert pipe.set.call_args.kwargs["ex"] == THIRTY_DAYS
    pipe.expire.assert_called_once_with("exec:index:wf_1:c1", THIRTY_DAYS)


def test_locks_use_record_and_enrollment_keys():
    redis_mock = Mock()
    store = RedisExecutionStore(redis_mock)

    store.lock("exec_1")
    store.enrollment_lock("wf_1", "c1")

    assert redis_mock.lock.call_args_list == [
        call("exec:exec_1:lock", timeout=120),
        call("exec:enroll:wf_1:c1:lock", timeout=120),
    ]


def test_get_missing_record_returns_none():
    redis_mock = Mock()
    redis_mock.get.return_value = None

    assert RedisExecutionStore(redis_mock).get("nope") is None


def test_workflow_save_tracks_active_set():
    redis_mock, pipe = redis_with_pipeline()
    repository = RedisWorkflowRepository(redis_mock)

    repository.save(Workflow(id="wf_1", organization_id="org_1", status=WorkflowStatus.ACTIVE))
    pipe.sadd.assert_any_call("wf:org:org_1:active", "wf_1")

    repository.save(Workflow(id="wf_1", organization_id="org_1", status=WorkflowStatus.PAUSED))
    pipe.srem.assert_called_once_with("wf:org:org_1:active", "wf_1")


def test_version_snapshot_is_write_once():
    redis_mock = Mock()
    redis_mock.set.return_value = None

    saved = RedisWorkflowRepository(redis_mock).save_version(Workflow(id="wf_1", version=3))

    assert not saved
    assert redis_mock.set.call_args.args[0] == "wf:wf_1:version:3"
    assert redis_mock.set.call_args.kwargs["nx"] is True


def test_active_workflows_skip_stale_members():
    redis_mock = Mock()
    redis_mock.smembers.return_value = {b"wf_b", b"wf_a", b"wf_gone"}
    documents = {
        "wf:wf_a:definition": json.dumps(Workflow(id="wf_a", status=WorkflowStatus.ACTIVE).to_document()),
        "wf:wf_b:definition": json.dumps(Workflow(id="wf_b", status=WorkflowStatus.ACTIVE).to_document()),
    }
    redis_mock.get.side_effect = documents.get

    workflows = RedisWorkflowRepository(redis_mock).active_for_organization("org_1")

    assert [w.id for w in workflows] == ["wf_a", "wf_b"]


def test_add_tags_keeps_existing_tags():
    redis_mock = Mock()
    redis_mock.get.return_value = json.dumps({"id": "c1", "tags": ["vip"]}).encode()

    RedisContactStore(redis_mock).add_tags("c1", ["vip", "lead"])

    key, payload = redis_mock.set.call_args.args
    assert key == "contact:c1"
    assert json.loads(payload)["tags"] == ["vip", "lead"]


def test_mutating_unknown_contact_is_a_no_op():
    redis_mock = Mock()
    redis_mock.get.return_value = None

    RedisContactStore(redis_mock).update_field("c1", "plan", "pro")

    redis_mock.set.assert_not_called()


def test_revenue_goal_updates_revenue_totals():
    redis_mock, pipe = redis_with_pipeline()
    goal = GoalConfig(goal_type="revenue", goal_name="purchase", revenue_amount=49.9, currency="EUR")

    RedisGoalTracker(redis_mock).record("wf_1", "exec_1", "c1", goal)

    pipe.hincrby.assert_called_once_with("wf:wf_1:goals", "purchase", 1)
    pipe.hincrbyfloat.assert_called_once_with("wf:wf_1:revenue", "EUR", 49.9)
    conversion = json.loads(pipe.lpush.call_args.args[1])
    assert conversion["revenue_amount"] == 49.9
    assert conversion["contact_id"] == "c1"


def test_conversion_goal_has_no_revenue():
    redis_mock, pipe = redis_with_pipeline()

    RedisGoalTracker(redis_mock).record("wf_1", "exec_1", "c1", GoalConfig(goal_type="conversion"))

    pipe.hincrby.assert_called_once_with("wf:wf_1:goals", "conversion", 1)
    pipe.hincrbyfloat.assert_not_called()


def test_scheduler_sends_resume_task_with_eta():
    celery_mock = Mock()
    at = datetime(2024, 1, 11, 9, 0, tzinfo=timezone.utc)

    set_correlation_id("corr-1")
    CeleryScheduler(celery_mock).schedule("exec_1", at)

    assert celery_mock.send_task.call_args == call(
        "engine.resume_execution",
        kwargs={"execution_id": "exec_1", "correlation_id": "corr-1"},
        eta=at,
        queue="engine",
    )
