"""Structured exception hierarchy for the workflow engine."""

from typing import Optional, Dict, Any, List
from pydantic import BaseModel


class TaskError(BaseModel):
    """Structured error returned by collaborators (webhooks, AI, messaging)"""
    error_type: str
    error_message: str
    http_status_code: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    is_retryable: bool = False
    context: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class WorkflowError(Exception):
    """Base exception for workflow errors"""

    def __init__(self, message: str, execution_id: str = "", **context):
        self.message = message
        self.execution_id = execution_id
        self.context = context
        super().__init__(message)


class GraphError(WorkflowError):
    """Illegal graph mutation or status transition"""
    pass


class ConfigValidationError(WorkflowError):

    def __init__(self, message: str, errors: Dict[str, str], **context):
        self.errors = errors
        super().__init__(message, **context)


class WorkflowValidationError(WorkflowError):
    """Raised by save/activate paths when the validator reports errors"""

    def __init__(self, message: str, issues: List[Any], **context):
        self.issues = issues
        super().__init__(message, **context)


class NodeExecutionError(WorkflowError):
    pass


class RoutingError(NodeExecutionError):
    """Condition or split produced a branch with no outgoing edge"""
    pass


class CollaboratorError(NodeExecutionError):
    """A collaborator call failed; carries the structured TaskError"""

    def __init__(self, task_error: TaskError, execution_id: str = ""):
        self.task_error = task_error
        super().__init__(task_error.error_message, execution_id, **task_error.context)

    @property
    def is_retryable(self) -> bool:
        return self.task_error.is_retryable


class TemplateResolutionError(WorkflowError):
    pass


class EnrollmentError(WorkflowError):
    pass
