"""Conversion of legacy drip campaigns and broadcasts into workflows."""

import logging
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from shared.exceptions import WorkflowError
from shared.node_configs import DelayConfig, DelayUnit, MediaType, MessageConfig, TriggerConfig
from shared.types import DelayNode, Edge, MessageNode, Position, TriggerNode, Workflow, WorkflowSettings
from shared.utils import utc_now

CENTER_X = 250
START_Y = 50
NODE_SPACING = 180


class LegacyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DripCampaignStep(LegacyModel):
    id: str
    order: int
    delay_amount: float = 0
    delay_unit: DelayUnit = "days"
    message_template: Optional[str] = None
    custom_message: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None


class DripCampaign(LegacyModel):
    id: str
    name: str
    description: Optional[str] = None
    organization_id: str
    trigger: Literal["tag_applied", "contact_added"] = "contact_added"
    tag_ids: List[str] = Field(default_factory=list)
    steps: List[DripCampaignStep] = Field(default_factory=list)


class BroadcastCampaign(LegacyModel):
    id: str
    name: str
    description: Optional[str] = None
    organization_id: str
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    message: str = ""
    template_id: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    target_tag_ids: List[str] = Field(default_factory=list)


class MigrationFailure(LegacyModel):
    campaign_id: str
    campaign_name: str
    error: str


class MigrationResult(LegacyModel):
    workflows: List[Workflow] = Field(default_factory=list)
    errors: List[MigrationFailure] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def _message_config(custom_message: Optional[str], template_id: Optional[str], media_url, media_type) -> MessageConfig:
    mode = "template" if template_id and not custom_message else "custom"
    return MessageConfig(
        mode=mode,
        custom_message=custom_message,
        template_id=template_id,
        media_url=media_url,
        media_type=media_type,
        use_contact_name=True,
    )


def _migrated_description(description: Optional[str], source: str) -> str:
    note = f"Migrated from {source} on {utc_now().date().isoformat()}"
    return f"{description}\n\n{note}" if description else note


def _edge(source: str, target: str) -> Edge:
    return Edge(id=f"edge_{source}_{target}", source=source, target=target)


def migrate_drip_campaign(campaign: DripCampaign) -> Workflow:
    """Trigger, then a delay (when non-zero) and a message per step, top to bottom."""
    y = START_Y
    trigger = TriggerNode(
        id=f"trigger_{campaign.id}",
        label="Campaign Trigger",
        position=Position(x=CENTER_X, y=y),
        config=TriggerConfig(trigger_type=campaign.trigger, tag_ids=campaign.tag_ids),
    )
    nodes = [trigger]
    edges = []
    previous = trigger.id

    for index, step in enumerate(sorted(campaign.steps, key=lambda s: s.order)):
        if step.delay_amount > 0:
            y += NODE_SPACING
            delay = DelayNode(
                id=f"delay_{step.id}",
                label=f"Wait {step.delay_amount:g} {step.delay_unit}",
                position=Position(x=CENTER_X, y=y),
                config=DelayConfig(amount=step.delay_amount, unit=step.delay_unit),
            )
            nodes.append(delay)
            edges.append(_edge(previous, delay.id))
            previous = delay.id

        y += NODE_SPACING
        message = MessageNode(
            id=f"message_{step.id}",
            label=f"Step {index + 1}",
            position=Position(x=CENTER_X, y=y),
            config=_message_config(step.custom_message, step.message_template, step.media_url, step.media_type),
        )
        nodes.append(message)
        edges.append(_edge(previous, message.id))
        previous = message.id

    return Workflow(
        id=f"workflow_{campaign.id}",
        organization_id=campaign.organization_id,
        name=f"{campaign.name} (Migrated)",
        description=_migrated_description(campaign.description, "drip campaign"),
        type="drip_campaign",
        nodes=nodes,
        edges=edges,
        settings=WorkflowSettings(allow_reentry=False),
    )


def migrate_broadcast(broadcast: BroadcastCampaign) -> Workflow:
    """Scheduled (or tag) trigger followed by the broadcast message."""
    if broadcast.scheduled_date or not broadcast.target_tag_ids:
        trigger_config = TriggerConfig(
            trigger_type="date_time",
            scheduled_date=broadcast.scheduled_date,
            scheduled_time=broadcast.scheduled_time,
            timezone="UTC",
        )
    else:
        trigger_config = TriggerConfig(trigger_type="tag_applied", tag_ids=broadcast.target_tag_ids)

    trigger = TriggerNode(
        id=f"trigger_{broadcast.id}",
        label="Broadcast Trigger",
        position=Position(x=CENTER_X, y=START_Y),
        config=trigger_config,
    )
    message = MessageNode(
        id=f"message_{broadcast.id}",
        label="Broadcast Message",
        position=Position(x=CENTER_X, y=START_Y + NODE_SPACING),
        config=_message_config(broadcast.message or None, broadcast.template_id, broadcast.media_url, broadcast.media_type),
    )
    return Workflow(
        id=f"workflow_{broadcast.id}",
        organization_id=broadcast.organization_id,
        name=f"{broadcast.name} (Migrated)",
        description=_migrated_description(broadcast.description, "broadcast"),
        type="broadcast",
        nodes=[trigger, message],
        edges=[_edge(trigger.id, message.id)],
    )


def bulk_migrate(campaigns: List[dict], kind: Literal["drip", "broadcast"]) -> MigrationResult:
    """Migrates raw campaign documents, collecting per-campaign failures."""
    result = MigrationResult()
    for raw in campaigns:
        try:
            if kind == "drip":
                workflow = migrate_drip_campaign(DripCampaign.model_validate(raw))
            else:
                workflow = migrate_broadcast(BroadcastCampaign.model_validate(raw))
        except (ValidationError, WorkflowError) as e:
            logging.warning("Campaign migration failed", extra={"campaign_id": raw.get("id"), "error": str(e)})
            result.errors.append(MigrationFailure(
                campaign_id=str(raw.get("id", "")),
                campaign_name=str(raw.get("name", "")),
                error=str(e),
            ))
            continue
        result.workflows.append(workflow)
    logging.info("Campaign migration finished", extra={"kind": kind, "migrated": len(result.workflows), "failed": len(result.errors)})
    return result
