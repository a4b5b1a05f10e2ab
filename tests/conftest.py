"""Shared pytest fixtures for testing."""

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from flow_builder.canvas import FlowBuilderState
from flow_builder.config import (
    BuilderConfig,
    NodeType,
    Settings,
    SimulatorConfig,
)
from flow_builder.models import Flow, FlowNode, FlowTransition, make_position
from flow_builder.nodes import NodeRegistry
from flow_builder.resources import InMemoryFlowResource

FLOW_ID = "flow-1"


def build_node(
    node_id: str,
    node_type: NodeType,
    config: Optional[Dict[str, Any]] = None,
    name: Optional[str] = None,
    x: float = 0,
    y: float = 0,
) -> FlowNode:
    return FlowNode(
        id=node_id,
        flow_id=FLOW_ID,
        name=name or node_id,
        type=node_type,
        position=make_position(x, y),
        config=config or {},
    )


def build_transition(
    transition_id: str,
    from_node_id: str,
    to_node_id: str,
    condition: Optional[str] = None,
    priority: int = 0,
) -> FlowTransition:
    return FlowTransition(
        id=transition_id,
        flow_id=FLOW_ID,
        from_node_id=from_node_id,
        to_node_id=to_node_id,
        condition=condition,
        priority=priority,
    )


def build_flow(nodes: List[FlowNode], transitions: List[FlowTransition]) -> Flow:
    return Flow(
        id=FLOW_ID,
        name="Support triage",
        slug="support-triage",
        nodes=nodes,
        transitions=transitions,
    )


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with no simulator delay and a long autosave debounce."""
    return Settings(
        builder=BuilderConfig(autosave_delay_s=60.0),
        simulator=SimulatorConfig(message_delay_s=0),
    )


@pytest.fixture
def registry() -> NodeRegistry:
    """Fresh node registry."""
    return NodeRegistry()


# =============================================================================
# Graph Fixtures
# =============================================================================


@pytest.fixture
def node_factory():
    """Factory for flow nodes."""
    return build_node


@pytest.fixture
def transition_factory():
    """Factory for flow transitions."""
    return build_transition


@pytest.fixture
def linear_flow() -> Flow:
    """START -> MESSAGE -> END."""
    return build_flow(
        nodes=[
            build_node("start", NodeType.START, name="Start"),
            build_node("greet", NodeType.MESSAGE, {"message": "Welcome!"}, name="Greeting", y=150),
            build_node("end", NodeType.END, {"message": "Bye"}, name="Goodbye", y=300),
        ],
        transitions=[
            build_transition("t1", "start", "greet"),
            build_transition("t2", "greet", "end"),
        ],
    )


@pytest.fixture
def question_flow() -> Flow:
    """START -> QUESTION(name) -> MESSAGE -> END."""
    return build_flow(
        nodes=[
            build_node("start", NodeType.START),
            build_node(
                "ask",
                NodeType.QUESTION,
                {"variableName": "name", "prompt": "What is your name?", "required": True},
            ),
            build_node("hello", NodeType.MESSAGE, {"message": "Hello {{name}}"}),
            build_node("end", NodeType.END, {"message": "Done"}),
        ],
        transitions=[
            build_transition("t1", "start", "ask"),
            build_transition("t2", "ask", "hello"),
            build_transition("t3", "hello", "end"),
        ],
    )


# =============================================================================
# Builder Fixtures
# =============================================================================


@pytest.fixture
def resource(linear_flow) -> InMemoryFlowResource:
    """In-memory resource seeded with the linear flow."""
    resource = InMemoryFlowResource()
    resource.add_flow(linear_flow)
    return resource


@pytest_asyncio.fixture
async def builder(resource, settings, registry):
    """Builder state with the linear flow loaded."""
    state = FlowBuilderState(resource, registry=registry, settings=settings)
    await state.load(FLOW_ID)
    yield state
    await state.close()
