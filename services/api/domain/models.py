"""API request/response models."""

from typing import Optional, List, Dict, Any, Literal
from pydantic import Field
from shared.types import ApiModel, Edge, Node, ValidationIssue, WorkflowSettings, WorkflowStatus


class CreateWorkflowRequest(ApiModel):
    """Request body for creating a new workflow"""
    name: str = "Untitled Workflow"
    organization_id: str
    description: str = ""
    type: Literal["drip_campaign", "broadcast", "automation", "custom"] = "automation"
    settings: Optional[WorkflowSettings] = None


class UpdateGraphRequest(ApiModel):
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)


class StatusChangeRequest(ApiModel):
    status: WorkflowStatus


class ImportWorkflowRequest(ApiModel):
    """Exported workflow envelope plus the organization to import it into"""
    organization_id: str
    version: Optional[str] = None
    workflow: Dict[str, Any]


class MigrateCampaignsRequest(ApiModel):
    kind: Literal["drip", "broadcast"]
    campaigns: List[Dict[str, Any]]


class MigrateCampaignsResponse(ApiModel):
    workflow_ids: List[str]
    errors: List[Dict[str, str]]


class EventAcceptedResponse(ApiModel):
    status: str
    event_type: str
    contact_id: str


class ValidationErrorResponse(ApiModel):
    message: str
    issues: List[ValidationIssue]
