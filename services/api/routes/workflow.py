"""Workflow API routes."""

import logging
import uuid
from fastapi import APIRouter, HTTPException, status
from services.api.domain.models import (
    CreateWorkflowRequest,
    ImportWorkflowRequest,
    MigrateCampaignsRequest,
    MigrateCampaignsResponse,
    StatusChangeRequest,
    UpdateGraphRequest,
)
from services.api.infra.redis_store import RedisStore
from services.builder.graph_store import GraphStore
from services.builder.migration import bulk_migrate
from services.builder.validation import validate_workflow
from shared.exceptions import ConfigValidationError, GraphError, WorkflowValidationError
from shared.types import Workflow, WorkflowGraph, WorkflowStatus


router = APIRouter()
redis_store = RedisStore()


def new_workflow_id() -> str:
    return f"wf_{uuid.uuid4().hex}"


def load_workflow(workflow_id: str) -> Workflow:
    workflow = redis_store.get_workflow(workflow_id)
    if not workflow:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail=f"Workflow {workflow_id} not found")
    return workflow


def validation_failed(e: WorkflowValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "message": e.message,
            "issues": [issue.model_dump(by_alias=True, mode="json", exclude_none=True) for issue in e.issues],
        },
    )


def persist_graph_save(workflow: Workflow) -> None:
    """Non-draft workflows get a new pinned version on every graph save"""
    redis_store.save_workflow(workflow)
    if workflow.status != WorkflowStatus.DRAFT:
        redis_store.save_version(workflow)


@router.post("/workflows", status_code=status.HTTP_201_CREATED)
async def create_workflow(request: CreateWorkflowRequest):
    fields = {"description": request.description, "type": request.type}
    if request.settings is not None:
        fields["settings"] = request.settings
    workflow = Workflow.create(request.name, new_workflow_id(), request.organization_id, **fields)
    redis_store.save_workflow(workflow)

    logging.info("Workflow created", extra={"workflow_id": workflow.id, "organization_id": workflow.organization_id})
    return workflow.to_document()


@router.get("/workflows")
async def list_workflows(organization_id: str):
    return [workflow.to_document() for workflow in redis_store.list_workflows(organization_id)]


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str):
    return load_workflow(workflow_id).to_document()


@router.put("/workflows/{workflow_id}/graph")
async def save_graph(workflow_id: str, request: UpdateGraphRequest):
    workflow = load_workflow(workflow_id)
    if workflow.status == WorkflowStatus.ARCHIVED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Archived workflows cannot be edited")

    updated = workflow.with_graph(WorkflowGraph(nodes=request.nodes, edges=request.edges))
    if workflow.status != WorkflowStatus.DRAFT:
        updated = updated.model_copy(update={"version": workflow.version + 1})

    try:
        saved = GraphStore(updated).save(persist_graph_save)
    except WorkflowValidationError as e:
        raise validation_failed(e)
    except (GraphError, ConfigValidationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return saved.to_document()


@router.post("/workflows/{workflow_id}/validate")
async def validate(workflow_id: str):
    result = validate_workflow(load_workflow(workflow_id))
    return result.model_dump(by_alias=True, mode="json", exclude_none=True)


@router.post("/workflows/{workflow_id}/status")
async def change_status(workflow_id: str, request: StatusChangeRequest):
    workflow = load_workflow(workflow_id)
    try:
        updated = workflow.transition_to(request.status)
    except GraphError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if updated.status == WorkflowStatus.ACTIVE:
        result = validate_workflow(updated)
        if not result.is_valid:
            raise validation_failed(WorkflowValidationError(
                f"Workflow has {len(result.errors)} validation error(s)",
                result.errors,
                workflow_id=workflow_id,
            ))
        redis_store.save_version(updated)

    redis_store.save_workflow(updated)
    logging.info("Workflow status changed", extra={
        "workflow_id": workflow_id,
        "from_status": workflow.status.value,
        "to_status": updated.status.value,
        "version": updated.version,
    })
    return updated.to_document()


@router.get("/workflows/{workflow_id}/export")
async def export_workflow(workflow_id: str):
    return GraphStore(load_workflow(workflow_id)).export_json()


@router.post("/workflows/import", status_code=status.HTTP_201_CREATED)
async def import_workflow(request: ImportWorkflowRequest):
    document = {k: v for k, v in request.workflow.items() if k not in ("organization_id", "created_at", "updated_at")}
    document.update({
        "id": new_workflow_id(),
        "organizationId": request.organization_id,
        "status": WorkflowStatus.DRAFT.value,
        "version": 1,
    })
    document.pop("createdAt", None)
    document.pop("updatedAt", None)

    try:
        workflow = GraphStore().import_json({"version": request.version, "workflow": document})
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    redis_store.save_workflow(workflow)
    logging.info("Workflow imported", extra={"workflow_id": workflow.id, "organization_id": workflow.organization_id})
    return workflow.to_document()


@router.post("/workflows/migrate", response_model=MigrateCampaignsResponse)
async def migrate_campaigns(request: MigrateCampaignsRequest):
    result = bulk_migrate(request.campaigns, request.kind)
    for workflow in result.workflows:
        redis_store.save_workflow(workflow)

    return MigrateCampaignsResponse(
        workflow_ids=[workflow.id for workflow in result.workflows],
        errors=[failure.model_dump(by_alias=True) for failure in result.errors],
    )
