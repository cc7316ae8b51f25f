"""Editable in-memory graph for one workflow, with undo/redo."""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional
from services.builder.editors import parse_config
from services.builder.registry import get_node_spec
from services.builder.validation import validate_workflow
from shared.constants import DUPLICATE_NODE_OFFSET, EXPORT_FORMAT_VERSION, MAX_HISTORY_SNAPSHOTS, MAX_NODES_PER_WORKFLOW
from shared.exceptions import GraphError, WorkflowValidationError
from shared.types import NODE_CLASSES, BaseNode, Edge, NodeType, Position, ValidationResult, Workflow, WorkflowGraph
from shared.utils import generate_edge_id, generate_node_id, utc_now

NODE_FIELDS = {"label", "description", "position", "config", "type"}


class GraphStore:
    """Holds the nodes and edges of the workflow being edited.

    Every mutation pushes a deep snapshot of the graph onto the undo stack
    before it is applied; a new mutation clears the redo stack. Selection is
    transient and never snapshotted.
    """

    def __init__(self, workflow: Optional[Workflow] = None):
        self._workflow: Optional[Workflow] = None
        self._graph = WorkflowGraph()
        self._undo: List[WorkflowGraph] = []
        self._redo: List[WorkflowGraph] = []
        self.selected_node_id: Optional[str] = None
        self.is_dirty = False
        if workflow is not None:
            self.load(workflow)

    @property
    def nodes(self) -> List[BaseNode]:
        return self._graph.nodes

    @property
    def edges(self) -> List[Edge]:
        return self._graph.edges

    @property
    def workflow(self) -> Optional[Workflow]:
        if self._workflow is None:
            return None
        return self._workflow.with_graph(self._graph)

    def graph(self) -> WorkflowGraph:
        return self._graph.copy_graph()

    def load(self, workflow: Workflow) -> None:
        self._workflow = workflow
        self._graph = workflow.graph()
        self._undo.clear()
        self._redo.clear()
        self.selected_node_id = None
        self.is_dirty = False

    def _snapshot(self) -> None:
        self._undo.append(self._graph.copy_graph())
        if len(self._undo) > MAX_HISTORY_SNAPSHOTS:
            self._undo.pop(0)
        self._redo.clear()
        self.is_dirty = True

    def _require_node(self, node_id: str) -> BaseNode:
        node = self._graph.get_node(node_id)
        if node is None:
            raise GraphError(f"Node '{node_id}' does not exist", node_id=node_id)
        return node

    def _replace_node(self, node: BaseNode) -> None:
        self._graph.nodes = [node if n.id == node.id else n for n in self._graph.nodes]

    def _check_instance_limit(self, node_type: NodeType) -> None:
        limit = get_node_spec(node_type).palette.max_instances
        if limit is not None and sum(1 for n in self._graph.nodes if n.type == node_type.value) >= limit:
            raise GraphError(f"Only {limit} {node_type.value} node(s) allowed per workflow", node_type=node_type.value)
        if len(self._graph.nodes) >= MAX_NODES_PER_WORKFLOW:
            raise GraphError(f"Workflow exceeds maximum node limit of {MAX_NODES_PER_WORKFLOW}")

    def add_node(self, node_type, position: Optional[Dict[str, float]] = None) -> BaseNode:
        node_type = NodeType(node_type)
        self._check_instance_limit(node_type)
        spec = get_node_spec(node_type)
        node = NODE_CLASSES[node_type.value](
            id=generate_node_id(node_type.value),
            label=spec.default_label,
            position=Position.model_validate(position or {}),
            config=spec.default_config(),
        )
        self._snapshot()
        self._graph.nodes.append(node)
        self.selected_node_id = node.id
        logging.debug("Node added", extra={"node_id": node.id, "node_type": node_type.value})
        return node

    def update_node(self, node_id: str, partial: Dict[str, Any]) -> BaseNode:
        """Merges label, description, position and a partial config into a node."""
        node = self._require_node(node_id)
        unknown = set(partial) - NODE_FIELDS
        if unknown:
            raise GraphError(f"Cannot update node fields: {', '.join(sorted(unknown))}", node_id=node_id)
        if "type" in partial and partial["type"] != node.type:
            raise GraphError(f"Node '{node_id}' type cannot change from {node.type} to {partial['type']}", node_id=node_id)

        update: Dict[str, Any] = {}
        if "label" in partial:
            update["label"] = partial["label"]
        if "description" in partial:
            update["description"] = partial["description"]
        if "position" in partial:
            position = partial["position"]
            update["position"] = position if isinstance(position, Position) else Position.model_validate(position)
        if "config" in partial:
            merged = node.config.model_dump(by_alias=True, exclude_none=True)
            config = partial["config"]
            if not isinstance(config, dict):
                config = config.model_dump(by_alias=True, exclude_none=True)
            for key, value in config.items():
                merged[key] = value
            update["config"] = parse_config(node.type, merged)

        updated = node.model_copy(update=update, deep=True)
        self._snapshot()
        self._replace_node(updated)
        return updated

    def delete_node(self, node_id: str) -> None:
        if self._graph.get_node(node_id) is None:
            return
        self._snapshot()
        self._graph.nodes = [n for n in self._graph.nodes if n.id != node_id]
        self._graph.edges = [e for e in self._graph.edges if e.source != node_id and e.target != node_id]
        if self.selected_node_id == node_id:
            self.selected_node_id = None

    def duplicate_node(self, node_id: str) -> BaseNode:
        node = self._require_node(node_id)
        self._check_instance_limit(NodeType(node.type))
        copy_node = node.model_copy(deep=True, update={
            "id": generate_node_id(node.type),
            "label": f"{node.label} (Copy)",
            "position": Position(x=node.position.x + DUPLICATE_NODE_OFFSET, y=node.position.y + DUPLICATE_NODE_OFFSET),
        })
        self._snapshot()
        self._graph.nodes.append(copy_node)
        self.selected_node_id = copy_node.id
        return copy_node

    def connect(self, source: str, target: str, handle: Optional[str] = None) -> Edge:
        if source == target:
            raise GraphError(f"Cannot connect node '{source}' to itself", node_id=source)
        self._require_node(source)
        self._require_node(target)
        for edge in self._graph.edges:
            if edge.source == source and edge.target == target and edge.source_handle == handle:
                raise GraphError(f"Edge from '{source}' to '{target}' already exists", edge_id=edge.id)

        edge = Edge(id=generate_edge_id(source, target), source=source, target=target, source_handle=handle)
        self._snapshot()
        self._graph.edges.append(edge)
        return edge

    def disconnect(self, edge_id: str) -> None:
        if not any(e.id == edge_id for e in self._graph.edges):
            return
        self._snapshot()
        self._graph.edges = [e for e in self._graph.edges if e.id != edge_id]

    def set_selected_node(self, node_id: Optional[str]) -> None:
        if node_id is not None:
            self._require_node(node_id)
        self.selected_node_id = node_id

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self._graph.copy_graph())
        self._graph = self._undo.pop()
        self._clear_stale_selection()
        self.is_dirty = True
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self._graph.copy_graph())
        self._graph = self._redo.pop()
        self._clear_stale_selection()
        self.is_dirty = True
        return True

    def _clear_stale_selection(self) -> None:
        if self.selected_node_id and self._graph.get_node(self.selected_node_id) is None:
            self.selected_node_id = None

    def validate(self) -> ValidationResult:
        return validate_workflow(self._graph)

    def save(self, persist: Callable[[Workflow], Any]) -> Workflow:
        """Re-validates and hands the workflow to ``persist``; errors block the save."""
        if self._workflow is None:
            raise GraphError("No workflow loaded")
        result = self.validate()
        if not result.is_valid:
            raise WorkflowValidationError(
                f"Workflow has {len(result.errors)} validation error(s)",
                result.errors,
                workflow_id=self._workflow.id,
            )
        workflow = self.workflow
        persist(workflow)
        self._workflow = workflow
        self.is_dirty = False
        logging.info("Workflow saved", extra={"workflow_id": workflow.id, "nodes": len(workflow.nodes)})
        return workflow

    def export_json(self) -> Dict[str, Any]:
        if self._workflow is None:
            raise GraphError("No workflow loaded")
        return {
            "version": EXPORT_FORMAT_VERSION,
            "exportedAt": utc_now().isoformat(),
            "workflow": self.workflow.to_document(),
        }

    def import_json(self, data: Dict[str, Any]) -> Workflow:
        """Loads an exported envelope (or a bare workflow document) as the current workflow."""
        document = copy.deepcopy(data.get("workflow", data))
        if "id" not in document and self._workflow is not None:
            document["id"] = self._workflow.id
        workflow = Workflow.model_validate(document)
        self.load(workflow)
        self.is_dirty = True
        return workflow
