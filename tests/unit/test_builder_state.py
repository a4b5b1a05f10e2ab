"""Unit tests for the flow builder state."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from flow_builder.canvas import FlowBuilderState
from flow_builder.config import BuilderActionType, NodeType
from flow_builder.exceptions import (
    InvalidTransition,
    LoadFailure,
    NodeNotFound,
    NoFlowLoaded,
    ResourceUnavailableError,
    UnknownNodeType,
    ValidationFailure,
)
from flow_builder.nodes import get_node_registry
from flow_builder.resources import InMemoryFlowResource

ADDABLE_TYPES = [
    d.type for d in get_node_registry().implemented_types() if d.type != NodeType.START
]


def node_named(builder, name):
    return next(n for n in builder.nodes if n.name == name)


def gate_method(monkeypatch, resource, name):
    """Make a resource method wait until the returned event is set."""
    gate = asyncio.Event()
    original = getattr(resource, name)

    async def gated(*args, **kwargs):
        await gate.wait()
        return await original(*args, **kwargs)

    monkeypatch.setattr(resource, name, gated)
    return gate


def dangling(nodes, transitions):
    node_ids = {n.id for n in nodes}
    return [
        (t.from_node_id, t.to_node_id)
        for t in transitions
        if t.from_node_id not in node_ids or t.to_node_id not in node_ids
    ]


class TestLoad:
    """Tests for loading flows."""

    @pytest.mark.asyncio
    async def test_load_populates_session(self, builder):
        """A loaded flow is clean with empty history."""
        assert [n.id for n in builder.nodes] == ["start", "greet", "end"]
        assert [t.id for t in builder.transitions] == ["t1", "t2"]
        assert builder.is_dirty is False
        assert builder.state.is_loading is False
        assert builder.state.last_saved is not None
        assert builder.can_undo() is False
        assert builder.can_redo() is False

    @pytest.mark.asyncio
    async def test_load_failure(self, settings):
        """Load errors raise LoadFailure and clear the loading flag."""
        state = FlowBuilderState(InMemoryFlowResource(), settings=settings)

        with pytest.raises(LoadFailure) as exc_info:
            await state.load("missing")

        assert exc_info.value.flow_id == "missing"
        assert state.state.is_loading is False
        assert state.flow is None

    @pytest.mark.asyncio
    async def test_edit_without_flow(self, settings):
        state = FlowBuilderState(InMemoryFlowResource(), settings=settings)

        with pytest.raises(NoFlowLoaded):
            await state.add_node(NodeType.MESSAGE, {"x": 0, "y": 0})

    @pytest.mark.asyncio
    async def test_reload_clears_history(self, builder):
        await builder.move_node("greet", {"x": 1, "y": 1})
        await builder.flush()

        await builder.load(builder.flow.id)

        assert builder.can_undo() is False
        assert node_named(builder, "Greeting").position == {"x": 1.0, "y": 1.0}


class TestNodeMutations:
    """Tests for node operations."""

    @pytest.mark.asyncio
    async def test_add_node_uses_default_config(self, builder):
        """New nodes get the registry default config and a server id."""
        node = await builder.add_node(NodeType.QUESTION, {"x": 40, "y": 60})

        assert node.config == {"variableName": "", "prompt": "What is your answer?", "required": True}
        assert node.name == "Question"
        assert node.position == {"x": 40.0, "y": 60.0}
        assert builder.nodes[-1] is node
        assert builder.is_dirty is True
        assert builder.history.last().type == BuilderActionType.ADD_NODE

        stored = await builder.resource.get_flow(builder.flow.id)
        assert stored.get_node(node.id) is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("node_type", ADDABLE_TYPES, ids=lambda t: t.value)
    async def test_default_config_round_trip(self, builder, registry, node_type):
        node = await builder.add_node(node_type, {"x": 0, "y": 0})

        stored = await builder.resource.get_flow(builder.flow.id)
        assert node.config == registry.default_config(node_type)
        assert stored.get_node(node.id).config == registry.default_config(node_type)

    @pytest.mark.asyncio
    async def test_add_unknown_type(self, builder, monkeypatch):
        create = AsyncMock()
        monkeypatch.setattr(builder.resource, "create_node", create)

        with pytest.raises(UnknownNodeType):
            await builder.add_node("TELEPORT", {"x": 0, "y": 0})

        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_second_start_rejected(self, builder):
        with pytest.raises(ValidationFailure):
            await builder.add_node(NodeType.START, {"x": 0, "y": 0})

        assert len(builder.nodes) == 3

    @pytest.mark.asyncio
    async def test_add_node_transport_failure(self, builder, monkeypatch):
        """Transport errors become notifications and leave state untouched."""
        monkeypatch.setattr(
            builder.resource, "create_node", AsyncMock(side_effect=ResourceUnavailableError())
        )
        received = []
        builder.on_notification(received.append)

        result = await builder.add_node(NodeType.MESSAGE, {"x": 0, "y": 0})

        assert result is None
        assert len(builder.nodes) == 3
        assert builder.can_undo() is False
        assert builder.is_dirty is False
        assert received[0].severity == "error"
        assert received[0].operation == "add_node"

    @pytest.mark.asyncio
    async def test_update_node_validates_config(self, builder, monkeypatch):
        update = AsyncMock()
        monkeypatch.setattr(builder.resource, "update_node", update)

        with pytest.raises(ValidationFailure) as exc_info:
            await builder.update_node("greet", {"config": {"message": ""}})

        assert exc_info.value.result.errors == ["Message is required"]
        update.assert_not_called()

    @pytest.mark.asyncio
    async def test_position_update_skips_validation(self, builder):
        """Incomplete nodes can still be repositioned."""
        question = await builder.add_node(NodeType.QUESTION, {"x": 0, "y": 0})

        updated = await builder.update_node(question.id, {"position": {"x": 5, "y": 6}})

        assert updated.position == {"x": 5.0, "y": 6.0}

    @pytest.mark.asyncio
    async def test_update_node_refreshes_selection(self, builder):
        builder.select_node("greet")

        updated = await builder.update_node("greet", {"name": "Welcome"})

        assert builder.selected_node is updated
        assert builder.selected_node.name == "Welcome"

    @pytest.mark.asyncio
    async def test_update_unknown_node(self, builder):
        with pytest.raises(NodeNotFound):
            await builder.update_node("nope", {"name": "X"})

    @pytest.mark.asyncio
    async def test_delete_node_cascades(self, builder):
        """Deleting a node removes its transitions and clears selection."""
        builder.select_transition("t1")

        assert await builder.delete_node("greet") is True

        assert [n.id for n in builder.nodes] == ["start", "end"]
        assert builder.transitions == []
        assert builder.selected_transition is None

        stored = await builder.resource.get_flow(builder.flow.id)
        assert stored.transitions == []

    @pytest.mark.asyncio
    async def test_concurrent_updates_of_one_node_are_serialised(self, builder, monkeypatch):
        original = builder.resource.update_node
        active = 0
        peak = 0

        async def tracking(flow_id, node_id, request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await original(flow_id, node_id, request)

        monkeypatch.setattr(builder.resource, "update_node", tracking)

        await asyncio.gather(
            builder.update_node("greet", {"name": "First"}),
            builder.update_node("greet", {"name": "Second"}),
        )
        assert peak == 1
        assert builder.state.get_node("greet").name == "Second"

        peak = 0
        await asyncio.gather(
            builder.update_node("greet", {"name": "Third"}),
            builder.update_node("end", {"name": "Finish"}),
        )
        assert peak == 2


class TestMoves:
    """Tests for node moves and autosave."""

    @pytest.mark.asyncio
    async def test_moves_collapse_and_persist_on_flush(self, builder, monkeypatch):
        update = AsyncMock(wraps=builder.resource.update_node)
        monkeypatch.setattr(builder.resource, "update_node", update)

        await builder.move_node("greet", {"x": 10, "y": 10})
        await builder.move_node("greet", {"x": 20, "y": 30})

        assert len(builder.history.undo_stack) == 1
        action = builder.history.last()
        assert action.type == BuilderActionType.MOVE_NODE
        assert action.data["before"] == {"x": 0.0, "y": 150.0}
        assert action.data["after"] == {"x": 20.0, "y": 30.0}
        update.assert_not_called()

        assert await builder.flush() is True

        assert update.await_count == 1
        stored = await builder.resource.get_flow(builder.flow.id)
        assert stored.get_node("greet").position == {"x": 20.0, "y": 30.0}
        assert builder.is_dirty is False

    @pytest.mark.asyncio
    async def test_autosave_after_debounce(self, builder, settings):
        settings.builder.autosave_delay_s = 0.01

        await builder.move_node("end", {"x": 300, "y": 400})
        assert builder.is_dirty is True

        await asyncio.sleep(0.1)

        assert builder.is_dirty is False
        stored = await builder.resource.get_flow(builder.flow.id)
        assert stored.get_node("end").position == {"x": 300.0, "y": 400.0}

    @pytest.mark.asyncio
    async def test_failed_move_reverts(self, builder, monkeypatch):
        monkeypatch.setattr(
            builder.resource, "update_node", AsyncMock(side_effect=ResourceUnavailableError())
        )

        await builder.move_node("greet", {"x": 500, "y": 500})
        assert await builder.flush() is False

        assert builder.state.get_node("greet").position == {"x": 0.0, "y": 150.0}
        assert builder.notifications[-1].operation == "move_node"
        assert builder.is_dirty is True

    @pytest.mark.asyncio
    async def test_undo_move(self, builder):
        await builder.move_node("greet", {"x": 99, "y": 99})

        assert await builder.undo() is True

        assert builder.state.get_node("greet").position == {"x": 0.0, "y": 150.0}
        assert builder.has_pending_changes is False
        stored = await builder.resource.get_flow(builder.flow.id)
        assert stored.get_node("greet").position == {"x": 0.0, "y": 150.0}

    @pytest.mark.asyncio
    async def test_move_during_update_survives_response(self, builder, monkeypatch):
        """A rename response must not overwrite a newer local move."""
        gate = gate_method(monkeypatch, builder.resource, "update_node")

        renaming = asyncio.create_task(builder.update_node("greet", {"name": "Renamed"}))
        await asyncio.sleep(0)
        await builder.move_node("greet", {"x": 500, "y": 500})
        gate.set()

        updated = await renaming
        assert updated.name == "Renamed"
        assert builder.state.get_node("greet").position == {"x": 500.0, "y": 500.0}
        assert builder.has_pending_changes is True

        assert await builder.flush() is True

        stored = await builder.resource.get_flow(builder.flow.id)
        assert stored.get_node("greet").position == {"x": 500.0, "y": 500.0}
        assert stored.get_node("greet").name == "Renamed"

    @pytest.mark.asyncio
    async def test_flush_ends_move_merging(self, builder):
        """Moves separated by a save undo one at a time."""
        await builder.move_node("greet", {"x": 10, "y": 10})
        await builder.flush()
        await builder.move_node("greet", {"x": 20, "y": 20})

        assert len(builder.history.undo_stack) == 2

        assert await builder.undo() is True
        assert builder.state.get_node("greet").position == {"x": 10.0, "y": 10.0}


class TestTransitions:
    """Tests for transition operations."""

    @pytest.mark.asyncio
    async def test_invalid_transitions_rejected(self, builder, monkeypatch):
        create = AsyncMock()
        monkeypatch.setattr(builder.resource, "create_transition", create)

        with pytest.raises(InvalidTransition):
            await builder.add_transition("greet", "greet")
        with pytest.raises(InvalidTransition):
            await builder.add_transition("greet", "ghost")
        with pytest.raises(InvalidTransition):
            await builder.add_transition("start", "end", priority=101)

        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_add_transition_with_label(self, builder):
        transition = await builder.add_transition(
            "start", "end", condition="skip == true", priority=20, label="Skip"
        )

        assert transition.label == "Skip"
        assert transition.condition == "skip == true"
        assert builder.transitions[-1] is transition

        assert await builder.undo() is True
        assert all(t.id != transition.id for t in builder.transitions)

    @pytest.mark.asyncio
    async def test_update_transition_and_undo(self, builder):
        updated = await builder.update_transition("t2", {"condition": "age > 18", "priority": 7})

        assert updated.condition == "age > 18"
        assert updated.priority == 7

        assert await builder.undo() is True
        restored = builder.state.get_transition("t2")
        assert restored.condition is None
        assert restored.priority == 0

        assert await builder.redo() is True
        assert builder.state.get_transition("t2").condition == "age > 18"

    @pytest.mark.asyncio
    async def test_delete_transition(self, builder):
        builder.select_transition("t2")

        assert await builder.delete_transition("t2") is True

        assert [t.id for t in builder.transitions] == ["t1"]
        assert builder.selected_transition is None

    @pytest.mark.asyncio
    async def test_delete_endpoint_while_connecting(self, builder, monkeypatch):
        """Deleting a node mid-connect still cascades the new transition."""
        gate = gate_method(monkeypatch, builder.resource, "create_transition")

        adding = asyncio.create_task(builder.add_transition("start", "end"))
        await asyncio.sleep(0)
        deleting = asyncio.create_task(builder.delete_node("end"))
        await asyncio.sleep(0)
        gate.set()

        await adding
        assert await deleting is True

        assert dangling(builder.nodes, builder.transitions) == []
        stored = await builder.resource.get_flow(builder.flow.id)
        assert dangling(stored.nodes, stored.transitions) == []

    @pytest.mark.asyncio
    async def test_connect_to_node_being_deleted(self, builder, monkeypatch):
        gate = gate_method(monkeypatch, builder.resource, "delete_node")
        create = AsyncMock(wraps=builder.resource.create_transition)
        monkeypatch.setattr(builder.resource, "create_transition", create)

        deleting = asyncio.create_task(builder.delete_node("end"))
        await asyncio.sleep(0)
        adding = asyncio.create_task(builder.add_transition("start", "end"))
        await asyncio.sleep(0)
        gate.set()

        assert await deleting is True
        with pytest.raises(InvalidTransition):
            await adding
        create.assert_not_called()


class TestUndoRedo:
    """Tests for undo/redo."""

    @pytest.mark.asyncio
    async def test_nothing_to_undo(self, builder):
        assert await builder.undo() is False
        assert await builder.redo() is False

    @pytest.mark.asyncio
    async def test_undo_delete_restores_node_and_transitions(self, builder):
        """Re-created entities get new ids that later history entries follow."""
        await builder.delete_node("greet")

        assert await builder.undo() is True

        restored = node_named(builder, "Greeting")
        assert restored.id != "greet"
        assert {(t.from_node_id, t.to_node_id) for t in builder.transitions} == {
            ("start", restored.id),
            (restored.id, "end"),
        }
        stored = await builder.resource.get_flow(builder.flow.id)
        assert len(stored.transitions) == 2

        assert await builder.redo() is True
        assert all(n.name != "Greeting" for n in builder.nodes)
        assert builder.transitions == []

    @pytest.mark.asyncio
    async def test_alias_chain_across_undo_redo(self, builder):
        node = await builder.add_node(NodeType.MESSAGE, {"x": 0, "y": 0}, name="Extra")

        await builder.undo()
        await builder.redo()
        recreated = node_named(builder, "Extra")
        assert recreated.id != node.id

        assert await builder.undo() is True
        assert all(n.name != "Extra" for n in builder.nodes)

    @pytest.mark.asyncio
    async def test_new_action_clears_redo(self, builder):
        await builder.update_node("greet", {"name": "Hi"})
        await builder.undo()
        assert builder.can_redo() is True

        await builder.update_node("end", {"name": "Bye"})

        assert builder.can_redo() is False

    @pytest.mark.asyncio
    async def test_undo_stack_is_bounded(self, builder):
        """Only the most recent 50 actions are kept."""
        for i in range(60):
            node_id = "greet" if i % 2 else "end"
            await builder.move_node(node_id, {"x": i, "y": i})

        assert len(builder.history.undo_stack) == 50
        assert builder.history.undo_stack[-1].data["after"] == {"x": 59.0, "y": 59.0}

    @pytest.mark.asyncio
    async def test_failed_undo_keeps_entry(self, builder, monkeypatch):
        await builder.add_node(NodeType.MESSAGE, {"x": 0, "y": 0})
        monkeypatch.setattr(
            builder.resource, "delete_node", AsyncMock(side_effect=ResourceUnavailableError())
        )

        assert await builder.undo() is False

        assert builder.can_undo() is True
        assert builder.can_redo() is False
        assert builder.notifications[-1].severity == "error"

    @pytest.mark.asyncio
    async def test_partial_undo_of_delete_warns(self, builder, monkeypatch):
        """Transitions that cannot be re-created are reported."""
        await builder.delete_node("greet")
        monkeypatch.setattr(
            builder.resource,
            "create_transition",
            AsyncMock(side_effect=ResourceUnavailableError()),
        )

        assert await builder.undo() is True

        assert node_named(builder, "Greeting") is not None
        assert builder.transitions == []
        warning = builder.notifications[-1]
        assert warning.severity == "warn"
        assert warning.summary == "Undo incomplete"
        assert "2 transition(s)" in warning.detail


class TestSessionState:
    """Tests for selection, viewport, observers and reset."""

    @pytest.mark.asyncio
    async def test_selection_is_exclusive(self, builder):
        builder.select_node("greet")
        builder.select_transition("t1")

        assert builder.selected_node is None
        assert builder.selected_transition.id == "t1"

        builder.select_node(builder.nodes[0])
        assert builder.selected_transition is None
        assert builder.selected_node.id == "start"

        builder.select_node(None)
        assert builder.selected_node is None

    @pytest.mark.asyncio
    async def test_viewport_zoom_is_clamped(self, builder):
        builder.set_viewport(offset={"x": -20, "y": 15}, zoom=5)
        assert builder.state.canvas_zoom == 2.0
        assert builder.state.canvas_offset == {"x": -20.0, "y": 15.0}

        builder.set_viewport(zoom=0.1)
        assert builder.state.canvas_zoom == 0.25

    @pytest.mark.asyncio
    async def test_subscribe(self, builder):
        seen = []
        unsubscribe = builder.subscribe(seen.append)

        builder.select_node("greet")
        unsubscribe()
        builder.select_node(None)

        assert len(seen) == 1
        assert seen[0] is builder.state

    @pytest.mark.asyncio
    async def test_validate_flow(self, builder):
        assert builder.validate_flow().valid is True

    @pytest.mark.asyncio
    async def test_reset_drops_in_flight_responses(self, builder, monkeypatch):
        """A response arriving after reset never reaches the new session."""
        gate = asyncio.Event()
        original = builder.resource.create_node

        async def slow_create(flow_id, request):
            await gate.wait()
            return await original(flow_id, request)

        monkeypatch.setattr(builder.resource, "create_node", slow_create)

        task = asyncio.create_task(builder.add_node(NodeType.MESSAGE, {"x": 0, "y": 0}))
        await asyncio.sleep(0)
        builder.reset()
        gate.set()

        assert await task is None
        assert builder.nodes == []
        assert builder.flow is None
        assert builder.can_undo() is False
        assert len(builder.notifications) == 0
