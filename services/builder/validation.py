"""Static workflow validation: trigger, connectivity, required fields, splits and cycles."""

from collections import deque
from typing import Dict, List, Set
from services.builder.config_rules import split_percentage_error
from services.builder.editors import validate_config
from shared.constants import CONDITION_HANDLES, WAIT_TIMEOUT_HANDLE
from shared.types import NodeType, Severity, ValidationIssue, ValidationResult, WorkflowGraph

WAITING_NODE_TYPES = {NodeType.DELAY.value, NodeType.WAIT_UNTIL.value}


def validate_workflow(graph: WorkflowGraph) -> ValidationResult:
    """Runs every check in order and collects errors and warnings."""
    issues: List[ValidationIssue] = []
    issues.extend(check_trigger_count(graph))
    issues.extend(check_connectivity(graph))
    issues.extend(check_edge_handles(graph))
    issues.extend(check_required_fields(graph))
    issues.extend(check_split_percentages(graph))
    issues.extend(check_cycles(graph))
    return ValidationResult(issues=issues)


def _error(message: str, node_id: str = None, edge_id: str = None) -> ValidationIssue:
    return ValidationIssue(severity=Severity.ERROR, message=message, node_id=node_id, edge_id=edge_id)


def _warning(message: str, node_id: str = None, edge_id: str = None) -> ValidationIssue:
    return ValidationIssue(severity=Severity.WARNING, message=message, node_id=node_id, edge_id=edge_id)


def _adjacency(graph: WorkflowGraph) -> Dict[str, List[str]]:
    node_ids = {n.id for n in graph.nodes}
    adjacency = {nid: [] for nid in node_ids}
    for edge in graph.edges:
        if edge.source in node_ids and edge.target in node_ids:
            adjacency[edge.source].append(edge.target)
    return adjacency


def reachable_from(adjacency: Dict[str, List[str]], start: str) -> Set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        node_id = queue.popleft()
        for child in adjacency.get(node_id, []):
            if child not in seen:
                seen.add(child)
                queue.append(child)
    return seen


def check_trigger_count(graph: WorkflowGraph) -> List[ValidationIssue]:
    triggers = graph.trigger_nodes()
    if not triggers:
        return [_error("Workflow must have a trigger node")]
    if len(triggers) > 1:
        return [_error(f"Workflow must have exactly one trigger node (found {len(triggers)})")]
    return []


def check_connectivity(graph: WorkflowGraph) -> List[ValidationIssue]:
    issues = []
    node_ids = {n.id for n in graph.nodes}
    for edge in graph.edges:
        if edge.source not in node_ids or edge.target not in node_ids:
            missing = edge.source if edge.source not in node_ids else edge.target
            issues.append(_error(f"Edge references missing node '{missing}'", edge_id=edge.id))

    adjacency = _adjacency(graph)
    has_incoming = {target for targets in adjacency.values() for target in targets}
    triggers = graph.trigger_nodes()
    reachable = reachable_from(adjacency, triggers[0].id) if len(triggers) == 1 else None

    for node in graph.nodes:
        if node.type == NodeType.TRIGGER.value:
            continue
        if node.id not in has_incoming:
            issues.append(_warning(f"'{node.label or node.id}' is not connected to the workflow", node_id=node.id))
        elif reachable is not None and node.id not in reachable:
            issues.append(_warning(f"'{node.label or node.id}' is not reachable from the trigger", node_id=node.id))

    if len(triggers) == 1 and not adjacency[triggers[0].id]:
        issues.append(_error("Trigger must connect to at least one node", node_id=triggers[0].id))
    return issues


def check_edge_handles(graph: WorkflowGraph) -> List[ValidationIssue]:
    issues = []
    for node in graph.nodes:
        outgoing = graph.outgoing(node.id)
        if node.type == NodeType.CONDITION.value:
            for edge in outgoing:
                if edge.source_handle not in CONDITION_HANDLES:
                    issues.append(_error(
                        f"Condition '{node.label}' edges must use the 'true' or 'false' handle",
                        node_id=node.id, edge_id=edge.id,
                    ))
        elif node.type == NodeType.SPLIT.value:
            branch_ids = {branch.id for branch in node.config.branches}
            for edge in outgoing:
                if edge.source_handle not in branch_ids:
                    issues.append(_error(
                        f"Split '{node.label}' edge does not match any branch",
                        node_id=node.id, edge_id=edge.id,
                    ))
        else:
            plain = [e for e in outgoing if e.source_handle != WAIT_TIMEOUT_HANDLE]
            if len(plain) > 1:
                issues.append(_warning(
                    f"'{node.label or node.id}' has {len(plain)} outgoing connections; only the first is followed",
                    node_id=node.id,
                ))
    return issues


def check_required_fields(graph: WorkflowGraph) -> List[ValidationIssue]:
    issues = []
    for node in graph.nodes:
        errors = validate_config(node.type, node.label, node.config, check_split_percentages=False)
        for message in errors.values():
            issues.append(_error(f"{node.label or node.type}: {message}", node_id=node.id))
    return issues


def check_split_percentages(graph: WorkflowGraph) -> List[ValidationIssue]:
    issues = []
    for node in graph.nodes:
        if node.type != NodeType.SPLIT.value:
            continue
        message = split_percentage_error(node.config)
        if message:
            issues.append(_error(f"{node.label or node.type}: {message}", node_id=node.id))
    return issues


def strongly_connected_components(adjacency: Dict[str, List[str]], nodes: Set[str]) -> List[List[str]]:
    """Tarjan's algorithm restricted to ``nodes``."""
    index_of: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    stack: List[str] = []
    on_stack: Set[str] = set()
    components: List[List[str]] = []
    counter = [0]

    def visit(node_id: str) -> None:
        index_of[node_id] = lowlink[node_id] = counter[0]
        counter[0] += 1
        stack.append(node_id)
        on_stack.add(node_id)
        for child in adjacency.get(node_id, []):
            if child not in nodes:
                continue
            if child not in index_of:
                visit(child)
                lowlink[node_id] = min(lowlink[node_id], lowlink[child])
            elif child in on_stack:
                lowlink[node_id] = min(lowlink[node_id], index_of[child])
        if lowlink[node_id] == index_of[node_id]:
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node_id:
                    break
            components.append(component)

    for node_id in sorted(nodes):
        if node_id not in index_of:
            visit(node_id)
    return components


def check_cycles(graph: WorkflowGraph) -> List[ValidationIssue]:
    triggers = graph.trigger_nodes()
    if len(triggers) != 1:
        return []
    adjacency = _adjacency(graph)
    reachable = reachable_from(adjacency, triggers[0].id)

    issues = []
    for component in strongly_connected_components(adjacency, reachable):
        members = set(component)
        if len(component) == 1 and component[0] not in adjacency[component[0]]:
            continue
        first = sorted(component)[0]
        has_exit = any(child not in members for member in component for child in adjacency[member])
        if not has_exit:
            issues.append(_error("Workflow contains an infinite loop with no exit", node_id=first))
            continue
        node_types = {graph.get_node(member).type for member in component}
        if not node_types & WAITING_NODE_TYPES:
            issues.append(_warning("Loop has no delay or wait step and may repeat immediately", node_id=first))
    return issues
