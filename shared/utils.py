"""Shared utilities."""

import uuid
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def short_id() -> str:
    return uuid.uuid4().hex[:9]


def generate_node_id(node_type: str) -> str:
    return f"{node_type}_{int(utc_now().timestamp() * 1000)}_{short_id()}"


def generate_edge_id(source: str, target: str) -> str:
    return f"edge_{source}_{target}_{short_id()}"


def generate_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex}"
