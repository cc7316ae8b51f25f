"""Redis key layout shared by the API and the orchestrator."""

from datetime import date


def workflow_definition(workflow_id: str) -> str:
    return f"wf:{workflow_id}:definition"


def workflow_version(workflow_id: str, version: int) -> str:
    return f"wf:{workflow_id}:version:{version}"


def organization_workflows(organization_id: str) -> str:
    return f"wf:org:{organization_id}:workflows"


def organization_active_workflows(organization_id: str) -> str:
    return f"wf:org:{organization_id}:active"


def daily_enrollments(workflow_id: str, day: date) -> str:
    return f"wf:{workflow_id}:enrolled:{day.isoformat()}"


def workflow_goals(workflow_id: str) -> str:
    return f"wf:{workflow_id}:goals"


def workflow_revenue(workflow_id: str) -> str:
    return f"wf:{workflow_id}:revenue"


def workflow_conversions(workflow_id: str) -> str:
    return f"wf:{workflow_id}:conversions"


def execution_record(execution_id: str) -> str:
    return f"exec:{execution_id}:record"


def execution_lock(execution_id: str) -> str:
    return f"exec:{execution_id}:lock"


def contact_executions(workflow_id: str, contact_id: str) -> str:
    return f"exec:index:{workflow_id}:{contact_id}"


def contact_waiting(contact_id: str) -> str:
    return f"exec:waiting:{contact_id}"


def contact_document(contact_id: str) -> str:
    return f"contact:{contact_id}"


def contact_last_message(contact_id: str) -> str:
    return f"contact:{contact_id}:last_message"


def enrollment_lock(workflow_id: str, contact_id: str) -> str:
    return f"exec:enroll:{workflow_id}:{contact_id}:lock"
