"""API service for workflow management and event ingestion."""

from fastapi import FastAPI
from services.api.routes.events import router as events_router
from services.api.routes.workflow import router as workflow_router
from services.api.middleware import CorrelationIdMiddleware
from services.builder.registry import palette
from shared.logging_config import setup_logging

setup_logging("api")

app = FastAPI(title="Campaign Workflow API", version="1.0.0")
app.add_middleware(CorrelationIdMiddleware)

app.include_router(workflow_router, tags=["Workflows"])
app.include_router(events_router, tags=["Events"])


@app.get("/")
async def root():
    return {"service": "api", "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/node-types")
async def node_types():
    return palette()
