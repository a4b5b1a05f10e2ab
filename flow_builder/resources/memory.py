"""
In-memory Flow Resource.

Dictionary-backed implementation of the flow resource API. Used for
offline previews of exported flow documents and in tests.
"""

import copy
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Union

from ..exceptions import ConflictError, NotFoundError
from ..models import (
    CreateFlowRequest,
    CreateNodeRequest,
    CreateTransitionRequest,
    Flow,
    FlowConfig,
    FlowNode,
    FlowTransition,
    UpdateFlowRequest,
    UpdateNodeRequest,
    UpdateTransitionRequest,
)
from .base import FlowResource

logger = logging.getLogger(__name__)


class InMemoryFlowResource(FlowResource):
    """
    Stores flows in process memory.

    Mirrors the server contract: ids are assigned here, the flow version
    is bumped on every structural change, node deletion cascades to
    transitions and flow deletion is soft.
    """

    def __init__(self):
        """Initialize empty storage."""
        self._flows: Dict[str, Flow] = {}

    # =========================================================================
    # Seeding
    # =========================================================================

    def add_flow(self, flow: Flow) -> Flow:
        """Store a flow as-is (ids preserved)."""
        self._flows[flow.id] = copy.deepcopy(flow)
        return copy.deepcopy(flow)

    def load_document(self, document: Dict[str, Any]) -> Flow:
        """Store a flow from its JSON document."""
        document = dict(document)
        document.setdefault("id", str(uuid.uuid4()))
        return self.add_flow(Flow.from_dict(document))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryFlowResource":
        """Create a resource holding the flow(s) stored in a JSON file."""
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)

        resource = cls()
        for document in data if isinstance(data, list) else [data]:
            resource.load_document(document)
        return resource

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get(self, flow_id: str) -> Flow:
        flow = self._flows.get(flow_id)
        if flow is None or flow.deleted_at is not None:
            raise NotFoundError(f"Flow not found: {flow_id}")
        return flow

    def _get_node(self, flow: Flow, node_id: str) -> FlowNode:
        node = flow.get_node(node_id)
        if node is None:
            raise NotFoundError(f"Node not found: {node_id}")
        return node

    def _get_transition(self, flow: Flow, transition_id: str) -> FlowTransition:
        transition = next((t for t in flow.transitions if t.id == transition_id), None)
        if transition is None:
            raise NotFoundError(f"Transition not found: {transition_id}")
        return transition

    def _touch(self, flow: Flow) -> None:
        flow.version += 1
        flow.updated_at = datetime.utcnow()

    # =========================================================================
    # Flows
    # =========================================================================

    async def list_flows(self) -> List[Flow]:
        flows = [f for f in self._flows.values() if f.deleted_at is None]
        flows.sort(key=lambda f: f.name.lower())
        return [copy.deepcopy(f) for f in flows]

    async def get_flow(self, flow_id: str) -> Flow:
        return copy.deepcopy(self._get(flow_id))

    async def create_flow(self, request: CreateFlowRequest) -> Flow:
        if any(f.slug == request.slug and f.deleted_at is None for f in self._flows.values()):
            raise ConflictError(f"Slug already in use: {request.slug}")

        now = datetime.utcnow()
        flow = Flow(
            id=str(uuid.uuid4()),
            name=request.name,
            slug=request.slug,
            description=request.description,
            is_active=request.is_active,
            is_default=request.is_default,
            config=FlowConfig.from_dict(request.config),
            metadata=copy.deepcopy(request.metadata),
            created_at=now,
            updated_at=now,
        )
        self._flows[flow.id] = flow

        logger.info(f"Created flow: {flow.id} ({flow.name})")
        return copy.deepcopy(flow)

    async def update_flow(self, flow_id: str, request: UpdateFlowRequest) -> Flow:
        flow = self._get(flow_id)
        updates = request.model_dump(exclude_unset=True)

        if "name" in updates:
            flow.name = updates["name"]
        if "slug" in updates:
            flow.slug = updates["slug"]
        if "description" in updates:
            flow.description = updates["description"]
        if "is_active" in updates:
            flow.is_active = updates["is_active"]
        if "is_default" in updates:
            flow.is_default = updates["is_default"]
        if "config" in updates:
            flow.config = FlowConfig.from_dict(updates["config"])
        if "metadata" in updates:
            flow.metadata = updates["metadata"] or {}

        flow.updated_at = datetime.utcnow()
        return copy.deepcopy(flow)

    async def delete_flow(self, flow_id: str) -> None:
        flow = self._get(flow_id)
        flow.deleted_at = datetime.utcnow()
        logger.info(f"Deleted flow: {flow_id}")

    # =========================================================================
    # Nodes
    # =========================================================================

    async def create_node(self, flow_id: str, request: CreateNodeRequest) -> FlowNode:
        flow = self._get(flow_id)
        now = datetime.utcnow()

        node = FlowNode(
            id=str(uuid.uuid4()),
            flow_id=flow.id,
            name=request.name,
            type=request.type,
            position=dict(request.position),
            config=copy.deepcopy(request.config),
            metadata=copy.deepcopy(request.metadata or {}),
            created_at=now,
            updated_at=now,
        )
        flow.nodes.append(node)
        self._touch(flow)
        return copy.deepcopy(node)

    async def update_node(
        self, flow_id: str, node_id: str, request: UpdateNodeRequest
    ) -> FlowNode:
        flow = self._get(flow_id)
        node = self._get_node(flow, node_id)
        updates = request.model_dump(exclude_unset=True)

        if updates.get("name") is not None:
            node.name = updates["name"]
        if updates.get("position") is not None:
            node.position = dict(updates["position"])
        if updates.get("config") is not None:
            node.config = copy.deepcopy(updates["config"])
        if updates.get("metadata") is not None:
            node.metadata = copy.deepcopy(updates["metadata"])

        node.updated_at = datetime.utcnow()
        self._touch(flow)
        return copy.deepcopy(node)

    async def delete_node(self, flow_id: str, node_id: str) -> None:
        flow = self._get(flow_id)
        self._get_node(flow, node_id)

        flow.nodes = [n for n in flow.nodes if n.id != node_id]
        flow.transitions = [t for t in flow.transitions if not t.references(node_id)]
        self._touch(flow)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def create_transition(
        self, flow_id: str, request: CreateTransitionRequest
    ) -> FlowTransition:
        flow = self._get(flow_id)
        self._get_node(flow, request.from_node_id)
        self._get_node(flow, request.to_node_id)
        now = datetime.utcnow()

        transition = FlowTransition(
            id=str(uuid.uuid4()),
            flow_id=flow.id,
            from_node_id=request.from_node_id,
            to_node_id=request.to_node_id,
            condition=request.condition or None,
            priority=request.priority,
            metadata=copy.deepcopy(request.metadata or {}),
            created_at=now,
            updated_at=now,
        )
        flow.transitions.append(transition)
        self._touch(flow)
        return copy.deepcopy(transition)

    async def update_transition(
        self, flow_id: str, transition_id: str, request: UpdateTransitionRequest
    ) -> FlowTransition:
        flow = self._get(flow_id)
        transition = self._get_transition(flow, transition_id)
        updates = request.model_dump(exclude_unset=True)

        if "condition" in updates:
            transition.condition = updates["condition"] or None
        if updates.get("priority") is not None:
            transition.priority = updates["priority"]
        if updates.get("metadata") is not None:
            transition.metadata = copy.deepcopy(updates["metadata"])

        transition.updated_at = datetime.utcnow()
        self._touch(flow)
        return copy.deepcopy(transition)

    async def delete_transition(self, flow_id: str, transition_id: str) -> None:
        flow = self._get(flow_id)
        self._get_transition(flow, transition_id)

        flow.transitions = [t for t in flow.transitions if t.id != transition_id]
        self._touch(flow)
