"""
Unit tests for converting legacy campaigns into workflows.
"""

from services.builder.migration import (
    BroadcastCampaign,
    DripCampaign,
    bulk_migrate,
    migrate_broadcast,
    migrate_drip_campaign,
)
from services.builder.validation import validate_workflow


def drip_campaign(**overrides):
    data = {
        "id": "drip1",
        "name": "Onboarding",
        "organizationId": "org_1",
        "trigger": "tag_applied",
        "tagIds": ["new"],
        "steps": [
            {"id": "s2", "order": 2, "delayAmount": 2, "delayUnit": "days", "customMessage": "Tips"},
            {"id": "s1", "order": 1, "delayAmount": 0, "customMessage": "Welcome!"},
        ],
    }
    data.update(overrides)
    return DripCampaign.model_validate(data)


def test_drip_campaign_becomes_linear_workflow():
    workflow = migrate_drip_campaign(drip_campaign())

    assert [n.id for n in workflow.nodes] == ["trigger_drip1", "message_s1", "delay_s2", "message_s2"]
    assert [(e.source, e.target) for e in workflow.edges] == [
        ("trigger_drip1", "message_s1"),
        ("message_s1", "delay_s2"),
        ("delay_s2", "message_s2"),
    ]
    assert [n.position.y for n in workflow.nodes] == [50, 230, 410, 590]
    assert workflow.name == "Onboarding (Migrated)"
    assert workflow.type == "drip_campaign"
    assert workflow.nodes[0].config.tag_ids == ["new"]
    assert workflow.nodes[2].config.amount == 2
    assert validate_workflow(workflow).is_valid


def test_template_step_uses_template_mode():
    campaign = drip_campaign(steps=[{"id": "s1", "order": 1, "messageTemplate": "welcome_v2"}])

    message = migrate_drip_campaign(campaign).nodes[1]

    assert message.config.mode == "template"
    assert message.config.template_id == "welcome_v2"


def test_scheduled_broadcast_uses_date_time_trigger():
    broadcast = BroadcastCampaign.model_validate({
        "id": "b1",
        "name": "Black Friday",
        "organizationId": "org_1",
        "scheduledDate": "2024-11-29",
        "scheduledTime": "10:00",
        "message": "50% off today",
        "targetTagIds": ["customers"],
    })

    workflow = migrate_broadcast(broadcast)

    trigger = workflow.nodes[0]
    assert trigger.config.trigger_type == "date_time"
    assert trigger.config.scheduled_date == "2024-11-29"
    assert workflow.nodes[1].config.custom_message == "50% off today"
    assert workflow.type == "broadcast"


def test_unscheduled_tagged_broadcast_uses_tag_trigger():
    broadcast = BroadcastCampaign(id="b2", name="Promo", organization_id="org_1", message="Hi", target_tag_ids=["vip"])

    trigger = migrate_broadcast(broadcast).nodes[0]

    assert trigger.config.trigger_type == "tag_applied"
    assert trigger.config.tag_ids == ["vip"]


def test_bulk_migrate_collects_failures():
    result = bulk_migrate(
        [
            {"id": "ok", "name": "Fine", "organizationId": "org_1", "steps": []},
            {"id": "bad", "name": "Broken", "steps": []},
        ],
        "drip",
    )

    assert not result.success
    assert [w.id for w in result.workflows] == ["workflow_ok"]
    assert result.errors[0].campaign_id == "bad"
    assert result.errors[0].campaign_name == "Broken"
