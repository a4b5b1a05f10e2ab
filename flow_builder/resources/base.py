"""
Flow Resource Interface.

The remote collaborator that persists flows, nodes and transitions.
"""

from abc import ABC, abstractmethod
from typing import List

from ..models import (
    CreateFlowRequest,
    CreateNodeRequest,
    CreateTransitionRequest,
    Flow,
    FlowNode,
    FlowTransition,
    UpdateFlowRequest,
    UpdateNodeRequest,
    UpdateTransitionRequest,
)


class FlowResource(ABC):
    """
    Abstract flow-resource collaborator.

    Every mutation returns the entity as stored by the backend, which is
    the only version the builder state trusts.
    """

    # Flows

    @abstractmethod
    async def list_flows(self) -> List[Flow]:
        """List flows without their graphs."""

    @abstractmethod
    async def get_flow(self, flow_id: str) -> Flow:
        """Get a flow with nodes and transitions populated."""

    @abstractmethod
    async def create_flow(self, request: CreateFlowRequest) -> Flow:
        """Create a flow."""

    @abstractmethod
    async def update_flow(self, flow_id: str, request: UpdateFlowRequest) -> Flow:
        """Update flow attributes."""

    @abstractmethod
    async def delete_flow(self, flow_id: str) -> None:
        """Soft-delete a flow."""

    # Nodes

    @abstractmethod
    async def create_node(self, flow_id: str, request: CreateNodeRequest) -> FlowNode:
        """Create a node."""

    @abstractmethod
    async def update_node(
        self, flow_id: str, node_id: str, request: UpdateNodeRequest
    ) -> FlowNode:
        """Apply a partial node update."""

    @abstractmethod
    async def delete_node(self, flow_id: str, node_id: str) -> None:
        """Delete a node and the transitions that reference it."""

    # Transitions

    @abstractmethod
    async def create_transition(
        self, flow_id: str, request: CreateTransitionRequest
    ) -> FlowTransition:
        """Create a transition."""

    @abstractmethod
    async def update_transition(
        self, flow_id: str, transition_id: str, request: UpdateTransitionRequest
    ) -> FlowTransition:
        """Apply a partial transition update."""

    @abstractmethod
    async def delete_transition(self, flow_id: str, transition_id: str) -> None:
        """Delete a transition."""

    async def close(self) -> None:
        """Release any held connections."""
