"""
Flow Builder State.

Owns the editing session of one flow: the node and transition lists,
selection, viewport, undo/redo history and the debounced autosave.
Every structural edit is persisted through the flow resource first and
reconciled into local state from the backend's response; node moves are
applied optimistically and persisted by the autosave flush.
"""

import asyncio
import copy
import logging
from collections import deque
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Union

from ..config import BuilderActionType, NodeType, Settings, get_settings
from ..exceptions import (
    FlowBuilderError,
    InvalidTransition,
    LoadFailure,
    MutationFailure,
    NodeNotFound,
    NoFlowLoaded,
    TransitionNotFound,
    ValidationFailure,
)
from ..models import (
    BuilderAction,
    BuilderState,
    CreateNodeRequest,
    CreateTransitionRequest,
    Flow,
    FlowNode,
    FlowTransition,
    Notification,
    NodeValidationResult,
    UpdateNodeRequest,
    UpdateTransitionRequest,
    ValidationResult,
    make_position,
)
from ..nodes import NodeRegistry, get_node_registry
from ..resources import FlowResource
from .history import ActionHistory
from .validator import FlowValidator, NodeValidator

logger = logging.getLogger(__name__)

NODE_FIELDS = ("name", "position", "config", "metadata")
TRANSITION_FIELDS = ("condition", "priority", "metadata")

StateListener = Callable[[BuilderState], None]
NotificationListener = Callable[[Notification], None]


class FlowBuilderState:
    """
    Editing session for a single flow.

    Features:
    - Persist-then-reconcile node and transition edits
    - Cascading node deletion
    - Bounded undo/redo applied through the flow resource
    - Debounced autosave of node positions
    - Per-entity serialisation of concurrent edits
    """

    def __init__(
        self,
        resource: FlowResource,
        registry: Optional[NodeRegistry] = None,
        settings: Optional[Settings] = None,
        validator: Optional[FlowValidator] = None,
    ):
        self.resource = resource
        self.settings = settings or get_settings()
        self.registry = registry or get_node_registry()
        self.node_validator = NodeValidator()
        self.validator = validator or FlowValidator(
            settings=self.settings,
            registry=self.registry,
            node_validator=self.node_validator,
        )

        self.state = BuilderState(canvas_zoom=self.settings.canvas.default_zoom)
        self.history = ActionHistory(self.settings.builder.max_undo_actions)
        self.notifications: Deque[Notification] = deque(
            maxlen=self.settings.builder.max_notifications
        )

        self._listeners: List[StateListener] = []
        self._notification_listeners: List[NotificationListener] = []
        self._locks: Dict[str, asyncio.Lock] = {}

        # Responses issued under an older generation are dropped
        self._generation = 0

        self._autosave_task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()
        self._flushing = False
        self._pending_moves: Dict[str, Dict[str, float]] = {}
        # Node whose consecutive moves still merge into one history entry
        self._open_move: Optional[str] = None
        self._persisted_positions: Dict[str, Dict[str, float]] = {}

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def flow(self) -> Optional[Flow]:
        return self.state.flow

    @property
    def nodes(self) -> List[FlowNode]:
        return self.state.nodes

    @property
    def transitions(self) -> List[FlowTransition]:
        return self.state.transitions

    @property
    def selected_node(self) -> Optional[FlowNode]:
        return self.state.selected_node

    @property
    def selected_transition(self) -> Optional[FlowTransition]:
        return self.state.selected_transition

    @property
    def is_dirty(self) -> bool:
        return self.state.is_dirty

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending_moves)

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a function that removes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def on_notification(self, listener: NotificationListener) -> Callable[[], None]:
        self._notification_listeners.append(listener)
        return lambda: self._notification_listeners.remove(listener)

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self.state)

    def _notify(
        self,
        severity: str,
        summary: str,
        detail: str = "",
        operation: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            severity=severity,
            summary=summary,
            detail=detail,
            operation=operation,
        )
        self.notifications.append(notification)
        for listener in list(self._notification_listeners):
            listener(notification)
        return notification

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def load(self, flow_id: str) -> Flow:
        """
        Load a flow into the session.

        Raises:
            LoadFailure: If the flow cannot be fetched
        """
        self._cancel_autosave(force=True)
        self._generation += 1
        generation = self._generation

        self.state.is_loading = True
        self._emit()

        try:
            flow = await self.resource.get_flow(flow_id)
        except Exception as e:
            if generation == self._generation:
                self.state.is_loading = False
                self._emit()
            logger.warning(f"Failed to load flow {flow_id}: {e}")
            raise LoadFailure(flow_id, e) from e

        if generation != self._generation:
            logger.warning(f"Discarding stale load of flow {flow_id}")
            return flow

        self.history.clear()
        self._locks.clear()
        self._pending_moves.clear()
        self._open_move = None
        self._persisted_positions = {n.id: dict(n.position) for n in flow.nodes}

        self.state = BuilderState(
            flow=flow,
            nodes=list(flow.nodes),
            transitions=list(flow.transitions),
            canvas_zoom=self.settings.canvas.default_zoom,
            is_dirty=False,
            is_loading=False,
            last_saved=datetime.utcnow(),
        )

        logger.info(
            f"Loaded flow {flow.id} ({len(flow.nodes)} nodes, {len(flow.transitions)} transitions)"
        )
        self._emit()
        return flow

    def reset(self) -> None:
        """Clear the session; responses still in flight are dropped."""
        self._cancel_autosave(force=True)
        self._generation += 1

        self.history.clear()
        self._locks.clear()
        self._pending_moves.clear()
        self._open_move = None
        self._persisted_positions.clear()
        self.state = BuilderState(canvas_zoom=self.settings.canvas.default_zoom)

        logger.info("Builder state reset")
        self._emit()

    async def close(self) -> None:
        """Cancel background work."""
        task = self._autosave_task
        self._cancel_autosave(force=True)
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # Nodes
    # =========================================================================

    async def add_node(
        self,
        node_type: Union[NodeType, str],
        position: Dict[str, float],
        name: Optional[str] = None,
    ) -> Optional[FlowNode]:
        """
        Create a node with the registry's default config.

        Raises:
            UnknownNodeType: If the type is not registered
            ValidationFailure: If the flow already has a START node or is full
        """
        flow = self._require_flow()
        definition = self.registry.definition_of(node_type)

        if definition.type == NodeType.START and any(
            n.type == NodeType.START for n in self.state.nodes
        ):
            raise ValidationFailure("Flow already has a START node")

        if len(self.state.nodes) >= self.settings.canvas.max_nodes_per_flow:
            raise ValidationFailure(
                f"Flow cannot have more than {self.settings.canvas.max_nodes_per_flow} nodes"
            )

        request = CreateNodeRequest(
            flow_id=flow.id,
            name=name or definition.label,
            type=definition.type,
            position=make_position(position.get("x"), position.get("y")),
            config=self.registry.default_config(definition.type),
        )

        ok, node = await self._request(
            BuilderActionType.ADD_NODE, self.resource.create_node(flow.id, request)
        )
        if not ok:
            return None

        self._insert_node(node)
        self.history.record(
            BuilderAction(type=BuilderActionType.ADD_NODE, data={"node": copy.deepcopy(node)})
        )
        logger.debug(f"Added {node.type.value} node {node.id}")
        self._mark_dirty()
        return node

    async def update_node(self, node_id: str, updates: Dict[str, Any]) -> Optional[FlowNode]:
        """
        Apply a partial update to a node.

        Args:
            node_id: Node to update
            updates: Any of name, position, config, metadata

        Raises:
            NodeNotFound: If the node is not in the session
            ValidationFailure: If a name/config change leaves the node invalid
        """
        flow = self._require_flow()
        unknown = set(updates) - set(NODE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported node fields: {', '.join(sorted(unknown))}")

        async with self._lock_for(node_id):
            node = self._get_node(node_id)
            changes = dict(updates)
            if "position" in changes:
                changes["position"] = make_position(
                    changes["position"].get("x"), changes["position"].get("y")
                )

            if "name" in changes or "config" in changes:
                candidate = replace(
                    node,
                    name=changes.get("name", node.name),
                    config=changes.get("config", node.config),
                )
                result = self.validate_node(candidate)
                if not result.is_valid:
                    raise ValidationFailure(
                        f"Node '{candidate.name}' is invalid: {'; '.join(result.errors)}",
                        result=result,
                    )

            before = {key: copy.deepcopy(getattr(node, key)) for key in changes}
            ok, updated = await self._request(
                BuilderActionType.UPDATE_NODE,
                self.resource.update_node(flow.id, node_id, UpdateNodeRequest(**changes)),
            )
            if not ok:
                return None

            self._replace_node(updated, position_changed="position" in changes)
            after = {key: copy.deepcopy(getattr(updated, key)) for key in changes}
            self.history.record(
                BuilderAction(
                    type=BuilderActionType.UPDATE_NODE,
                    data={"node_id": node_id, "before": before, "after": after},
                )
            )
            self._mark_dirty()
            return updated

    async def delete_node(self, node_id: str) -> bool:
        """
        Delete a node and every transition that references it.

        Raises:
            NodeNotFound: If the node is not in the session
        """
        flow = self._require_flow()

        async with self._lock_for(node_id):
            node = self._get_node(node_id)
            removed = [t for t in self.state.transitions if t.references(node_id)]

            ok, _ = await self._request(
                BuilderActionType.DELETE_NODE, self.resource.delete_node(flow.id, node_id)
            )
            if not ok:
                return False

            self._drop_node(node_id)
            self.history.record(
                BuilderAction(
                    type=BuilderActionType.DELETE_NODE,
                    data={"node": copy.deepcopy(node), "transitions": copy.deepcopy(removed)},
                )
            )
            logger.debug(f"Deleted node {node_id} and {len(removed)} transitions")
            self._mark_dirty()
            return True

    async def move_node(self, node_id: str, position: Dict[str, float]) -> FlowNode:
        """
        Move a node on the canvas.

        The move is applied locally at once and persisted by the next
        autosave flush.

        Raises:
            NodeNotFound: If the node is not in the session
        """
        self._require_flow()
        node = self._get_node(node_id)
        previous = dict(node.position)
        node.position = make_position(position.get("x"), position.get("y"))

        last = self.history.last()
        if (
            self._open_move == node_id
            and last is not None
            and last.type == BuilderActionType.MOVE_NODE
            and last.data["node_id"] == node_id
        ):
            # Still the same drag; the window closes at the next flush
            last.data["after"] = dict(node.position)
            last.timestamp = datetime.utcnow()
            self.history.redo_stack.clear()
        else:
            self.history.record(
                BuilderAction(
                    type=BuilderActionType.MOVE_NODE,
                    data={"node_id": node_id, "before": previous, "after": dict(node.position)},
                )
            )

        self._open_move = node_id
        self._persisted_positions.setdefault(node_id, previous)
        self._pending_moves[node_id] = dict(node.position)
        self._mark_dirty()
        return node

    # =========================================================================
    # Transitions
    # =========================================================================

    async def add_transition(
        self,
        from_node_id: str,
        to_node_id: str,
        condition: Optional[str] = None,
        priority: int = 0,
        label: Optional[str] = None,
    ) -> Optional[FlowTransition]:
        """
        Connect two nodes.

        Raises:
            InvalidTransition: For self-loops, unknown endpoints or a
                priority outside 0..100
        """
        flow = self._require_flow()

        if from_node_id == to_node_id:
            raise InvalidTransition("A node cannot transition to itself")
        self._check_endpoints(from_node_id, to_node_id)
        self._check_priority(priority)

        request = CreateTransitionRequest(
            flow_id=flow.id,
            from_node_id=from_node_id,
            to_node_id=to_node_id,
            condition=condition or None,
            priority=priority,
            metadata={"label": label} if label else None,
        )

        async with self._lock_nodes(from_node_id, to_node_id):
            # An endpoint may have been deleted while we waited for the locks
            self._check_endpoints(from_node_id, to_node_id)
            ok, transition = await self._request(
                BuilderActionType.ADD_TRANSITION,
                self.resource.create_transition(flow.id, request),
            )
            if not ok or not await self._attach_transition(transition):
                return None

        self.history.record(
            BuilderAction(
                type=BuilderActionType.ADD_TRANSITION,
                data={"transition": copy.deepcopy(transition)},
            )
        )
        self._mark_dirty()
        return transition

    async def update_transition(
        self, transition_id: str, updates: Dict[str, Any]
    ) -> Optional[FlowTransition]:
        """
        Apply a partial update to a transition.

        Args:
            transition_id: Transition to update
            updates: Any of condition, priority, metadata, label

        Raises:
            TransitionNotFound: If the transition is not in the session
            InvalidTransition: If the priority is outside 0..100
        """
        flow = self._require_flow()
        unknown = set(updates) - set(TRANSITION_FIELDS) - {"label"}
        if unknown:
            raise ValueError(f"Unsupported transition fields: {', '.join(sorted(unknown))}")

        async with self._lock_for(transition_id):
            transition = self._get_transition(transition_id)
            changes = {k: v for k, v in updates.items() if k in TRANSITION_FIELDS}

            if "label" in updates:
                metadata = dict(changes.get("metadata", transition.metadata))
                if updates["label"]:
                    metadata["label"] = updates["label"]
                else:
                    metadata.pop("label", None)
                changes["metadata"] = metadata
            if "condition" in changes:
                changes["condition"] = changes["condition"] or None
            if "priority" in changes:
                self._check_priority(changes["priority"])

            before = {key: copy.deepcopy(getattr(transition, key)) for key in changes}
            ok, updated = await self._request(
                BuilderActionType.UPDATE_TRANSITION,
                self.resource.update_transition(
                    flow.id, transition_id, UpdateTransitionRequest(**changes)
                ),
            )
            if not ok:
                return None

            self._replace_transition(updated)
            after = {key: copy.deepcopy(getattr(updated, key)) for key in changes}
            self.history.record(
                BuilderAction(
                    type=BuilderActionType.UPDATE_TRANSITION,
                    data={"transition_id": transition_id, "before": before, "after": after},
                )
            )
            self._mark_dirty()
            return updated

    async def delete_transition(self, transition_id: str) -> bool:
        """
        Delete a transition.

        Raises:
            TransitionNotFound: If the transition is not in the session
        """
        flow = self._require_flow()

        async with self._lock_for(transition_id):
            transition = self._get_transition(transition_id)

            ok, _ = await self._request(
                BuilderActionType.DELETE_TRANSITION,
                self.resource.delete_transition(flow.id, transition_id),
            )
            if not ok:
                return False

            self._drop_transition(transition_id)
            self.history.record(
                BuilderAction(
                    type=BuilderActionType.DELETE_TRANSITION,
                    data={"transition": copy.deepcopy(transition)},
                )
            )
            self._mark_dirty()
            return True

    # =========================================================================
    # Selection and viewport
    # =========================================================================

    def select_node(self, node: Optional[Union[FlowNode, str]]) -> Optional[FlowNode]:
        """Select a node (or clear with None); clears the transition selection."""
        selected = None
        if node is not None:
            selected = self._get_node(node if isinstance(node, str) else node.id)

        self.state.selected_node = selected
        self.state.selected_transition = None
        self._emit()
        return selected

    def select_transition(
        self, transition: Optional[Union[FlowTransition, str]]
    ) -> Optional[FlowTransition]:
        """Select a transition (or clear with None); clears the node selection."""
        selected = None
        if transition is not None:
            selected = self._get_transition(
                transition if isinstance(transition, str) else transition.id
            )

        self.state.selected_transition = selected
        self.state.selected_node = None
        self._emit()
        return selected

    def set_viewport(
        self,
        offset: Optional[Dict[str, float]] = None,
        zoom: Optional[float] = None,
    ) -> None:
        canvas = self.settings.canvas
        if offset is not None:
            self.state.canvas_offset = make_position(offset.get("x"), offset.get("y"))
        if zoom is not None:
            self.state.canvas_zoom = min(max(zoom, canvas.min_zoom), canvas.max_zoom)
        self._emit()

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_node(self, node: FlowNode) -> NodeValidationResult:
        return self.node_validator.validate(node)

    def validate_flow(self) -> ValidationResult:
        return self.validator.validate(self.state.nodes, self.state.transitions)

    # =========================================================================
    # Undo / redo
    # =========================================================================

    async def undo(self) -> bool:
        """
        Revert the most recent action through the flow resource.

        Returns:
            True if an action was reverted
        """
        action = self.history.pop_undo()
        if action is None:
            return False
        self._open_move = None

        if await self._apply(action, reverse=True):
            self.history.push_redo(action)
            self._mark_dirty()
            return True

        self.history.push_undo(action)
        self._emit()
        return False

    async def redo(self) -> bool:
        """
        Re-apply the most recently undone action.

        Returns:
            True if an action was re-applied
        """
        action = self.history.pop_redo()
        if action is None:
            return False
        self._open_move = None

        if await self._apply(action, reverse=False):
            self.history.push_undo(action)
            self._mark_dirty()
            return True

        self.history.push_redo(action)
        self._emit()
        return False

    async def _apply(self, action: BuilderAction, reverse: bool) -> bool:
        self._require_flow()
        data = action.data
        kind = action.type

        try:
            if kind == BuilderActionType.ADD_NODE:
                if reverse:
                    return await self._remove_node(data["node"].id)
                return await self._recreate_node(data["node"])

            if kind == BuilderActionType.DELETE_NODE:
                if not reverse:
                    return await self._remove_node(data["node"].id)
                if not await self._recreate_node(data["node"]):
                    return False
                missing = 0
                for transition in data["transitions"]:
                    if not await self._recreate_transition(transition):
                        missing += 1
                if missing:
                    self._notify(
                        "warn",
                        "Undo incomplete",
                        f"{missing} transition(s) of '{data['node'].name}' could not be restored",
                        operation=kind.value,
                    )
                return True

            if kind in (BuilderActionType.UPDATE_NODE, BuilderActionType.MOVE_NODE):
                fields = data["before"] if reverse else data["after"]
                if kind == BuilderActionType.MOVE_NODE:
                    fields = {"position": fields}
                return await self._patch_node(data["node_id"], fields)

            if kind == BuilderActionType.ADD_TRANSITION:
                if reverse:
                    return await self._remove_transition(data["transition"].id)
                return await self._recreate_transition(data["transition"])

            if kind == BuilderActionType.DELETE_TRANSITION:
                if reverse:
                    return await self._recreate_transition(data["transition"])
                return await self._remove_transition(data["transition"].id)

            if kind == BuilderActionType.UPDATE_TRANSITION:
                fields = data["before"] if reverse else data["after"]
                return await self._patch_transition(data["transition_id"], fields)

        except (NodeNotFound, TransitionNotFound) as e:
            self._notify(
                "warn",
                "Cannot undo" if reverse else "Cannot redo",
                e.message,
                operation=kind.value,
            )
            return False

        raise ValueError(f"Unsupported action type: {kind}")

    async def _recreate_node(self, snapshot: FlowNode) -> bool:
        flow = self.state.flow
        request = CreateNodeRequest(
            flow_id=flow.id,
            name=snapshot.name,
            type=snapshot.type,
            position=dict(snapshot.position),
            config=copy.deepcopy(snapshot.config),
            metadata=copy.deepcopy(snapshot.metadata) or None,
        )
        ok, node = await self._request(
            BuilderActionType.ADD_NODE, self.resource.create_node(flow.id, request)
        )
        if not ok:
            return False

        self.history.alias(snapshot.id, node.id)
        self._insert_node(node)
        return True

    async def _recreate_transition(self, snapshot: FlowTransition) -> bool:
        flow = self.state.flow
        from_node_id = self.history.resolve(snapshot.from_node_id)
        to_node_id = self.history.resolve(snapshot.to_node_id)

        request = CreateTransitionRequest(
            flow_id=flow.id,
            from_node_id=from_node_id,
            to_node_id=to_node_id,
            condition=snapshot.condition,
            priority=snapshot.priority,
            metadata=copy.deepcopy(snapshot.metadata) or None,
        )

        async with self._lock_nodes(from_node_id, to_node_id):
            if self.state.get_node(from_node_id) is None or self.state.get_node(to_node_id) is None:
                logger.warning(
                    f"Cannot restore transition {snapshot.id}: endpoint no longer exists"
                )
                return False

            ok, transition = await self._request(
                BuilderActionType.ADD_TRANSITION,
                self.resource.create_transition(flow.id, request),
            )
            if not ok or not await self._attach_transition(transition):
                return False

        self.history.alias(snapshot.id, transition.id)
        return True

    async def _attach_transition(self, transition: FlowTransition) -> bool:
        """Add a created transition locally, or delete it if an endpoint vanished."""
        if all(
            self.state.get_node(endpoint) is not None
            for endpoint in (transition.from_node_id, transition.to_node_id)
        ):
            self.state.transitions.append(transition)
            return True

        logger.warning(f"Discarding transition {transition.id}: endpoint was deleted")
        await self._request(
            BuilderActionType.DELETE_TRANSITION,
            self.resource.delete_transition(self.state.flow.id, transition.id),
        )
        return False

    async def _remove_node(self, node_id: str) -> bool:
        live_id = self.history.resolve(node_id)
        async with self._lock_for(live_id):
            self._get_node(live_id)
            ok, _ = await self._request(
                BuilderActionType.DELETE_NODE,
                self.resource.delete_node(self.state.flow.id, live_id),
            )
            if ok:
                self._drop_node(live_id)
            return ok

    async def _remove_transition(self, transition_id: str) -> bool:
        live_id = self.history.resolve(transition_id)
        async with self._lock_for(live_id):
            self._get_transition(live_id)
            ok, _ = await self._request(
                BuilderActionType.DELETE_TRANSITION,
                self.resource.delete_transition(self.state.flow.id, live_id),
            )
            if ok:
                self._drop_transition(live_id)
            return ok

    async def _patch_node(self, node_id: str, fields: Dict[str, Any]) -> bool:
        live_id = self.history.resolve(node_id)
        async with self._lock_for(live_id):
            self._get_node(live_id)
            ok, updated = await self._request(
                BuilderActionType.UPDATE_NODE,
                self.resource.update_node(
                    self.state.flow.id, live_id, UpdateNodeRequest(**copy.deepcopy(fields))
                ),
            )
            if ok:
                self._replace_node(updated, position_changed="position" in fields)
            return ok

    async def _patch_transition(self, transition_id: str, fields: Dict[str, Any]) -> bool:
        live_id = self.history.resolve(transition_id)
        async with self._lock_for(live_id):
            self._get_transition(live_id)
            ok, updated = await self._request(
                BuilderActionType.UPDATE_TRANSITION,
                self.resource.update_transition(
                    self.state.flow.id, live_id, UpdateTransitionRequest(**copy.deepcopy(fields))
                ),
            )
            if ok:
                self._replace_transition(updated)
            return ok

    # =========================================================================
    # Autosave
    # =========================================================================

    def _mark_dirty(self) -> None:
        self.state.is_dirty = True
        self._schedule_autosave()
        self._emit()

    def _schedule_autosave(self) -> None:
        self._cancel_autosave()
        self._autosave_task = asyncio.create_task(self._autosave())

    def _cancel_autosave(self, force: bool = False) -> None:
        task = self._autosave_task
        if task is None or task.done():
            return
        # A flush already talking to the backend is left to finish
        if self._flushing and not force:
            return
        task.cancel()
        self._autosave_task = None

    async def _autosave(self) -> None:
        await asyncio.sleep(self.settings.builder.autosave_delay_s)
        await self.flush()

    async def flush(self) -> bool:
        """
        Persist pending node moves and mark the session clean.

        Returns:
            True if everything pending was saved
        """
        if self.state.flow is None:
            return True

        self._open_move = None
        generation = self._generation
        async with self._flush_lock:
            self._flushing = True
            self.state.is_saving = True
            self._emit()
            try:
                saved = await self._flush_moves(generation)
            finally:
                self._flushing = False

            if generation != self._generation:
                return False

            self.state.is_saving = False
            if saved:
                settle = self.settings.builder.autosave_settle_s
                if settle > 0:
                    await asyncio.sleep(settle)
                if generation != self._generation:
                    return False
                if not self._pending_moves:
                    self.state.is_dirty = False
                    self.state.last_saved = datetime.utcnow()
                    logger.debug(f"Flow {self.state.flow.id} saved")

            self._emit()
            return saved

    async def _flush_moves(self, generation: int) -> bool:
        pending, self._pending_moves = self._pending_moves, {}
        saved = True

        for node_id, position in pending.items():
            async with self._lock_for(node_id):
                if generation != self._generation:
                    return False
                if self.state.get_node(node_id) is None:
                    continue

                ok, updated = await self._request(
                    BuilderActionType.MOVE_NODE,
                    self.resource.update_node(
                        self.state.flow.id, node_id, UpdateNodeRequest(position=position)
                    ),
                )
                if generation != self._generation:
                    return False

                node = self.state.get_node(node_id)
                if ok:
                    self._persisted_positions[node_id] = dict(updated.position)
                    continue

                saved = False
                persisted = self._persisted_positions.get(node_id)
                if node is not None and persisted is not None and node_id not in self._pending_moves:
                    node.position = dict(persisted)
                    logger.warning(f"Reverted node {node_id} to its last saved position")

        return saved

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _request(
        self,
        operation: BuilderActionType,
        call: Awaitable[Any],
    ) -> Tuple[bool, Any]:
        """
        Await a resource call, turning failures into notifications.

        Returns:
            (ok, result); ok is False when the call failed or its response
            belongs to a session that has since been reset or reloaded
        """
        generation = self._generation
        try:
            result = await call
        except Exception as e:
            if generation != self._generation:
                return False, None
            failure = MutationFailure(operation.value, e)
            logger.warning(str(failure))
            self._notify("error", "Could not save changes", failure.message, operation.value)
            return False, None

        if generation != self._generation:
            logger.warning(f"Dropping stale {operation.value} response")
            return False, None

        return True, result

    def _require_flow(self) -> Flow:
        if self.state.flow is None:
            raise NoFlowLoaded()
        return self.state.flow

    def _lock_for(self, entity_id: str) -> asyncio.Lock:
        return self._locks.setdefault(entity_id, asyncio.Lock())

    @asynccontextmanager
    async def _lock_nodes(self, *node_ids: str) -> AsyncIterator[None]:
        """Hold the locks of several entities, acquired in sorted order."""
        async with AsyncExitStack() as stack:
            for node_id in sorted(set(node_ids)):
                await stack.enter_async_context(self._lock_for(node_id))
            yield

    def _check_endpoints(self, *node_ids: str) -> None:
        for node_id in node_ids:
            if self.state.get_node(node_id) is None:
                raise InvalidTransition(f"Unknown node: {node_id}")

    def _get_node(self, node_id: str) -> FlowNode:
        node = self.state.get_node(node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def _get_transition(self, transition_id: str) -> FlowTransition:
        transition = self.state.get_transition(transition_id)
        if transition is None:
            raise TransitionNotFound(transition_id)
        return transition

    def _check_priority(self, priority: int) -> None:
        if not isinstance(priority, int) or not 0 <= priority <= 100:
            raise InvalidTransition(f"Priority must be between 0 and 100 (got {priority})")

    def _insert_node(self, node: FlowNode) -> None:
        self.state.nodes.append(node)
        self._persisted_positions[node.id] = dict(node.position)

    def _replace_node(self, node: FlowNode, position_changed: bool = True) -> None:
        self._persisted_positions[node.id] = dict(node.position)
        pending = self._pending_moves.get(node.id)
        if pending is not None and not position_changed:
            # The local move is newer than this response and is still unsaved
            node.position = dict(pending)
        else:
            self._pending_moves.pop(node.id, None)

        self.state.nodes = [node if n.id == node.id else n for n in self.state.nodes]
        if self.state.selected_node is not None and self.state.selected_node.id == node.id:
            self.state.selected_node = node

    def _replace_transition(self, transition: FlowTransition) -> None:
        self.state.transitions = [
            transition if t.id == transition.id else t for t in self.state.transitions
        ]
        selected = self.state.selected_transition
        if selected is not None and selected.id == transition.id:
            self.state.selected_transition = transition

    def _drop_node(self, node_id: str) -> None:
        self.state.nodes = [n for n in self.state.nodes if n.id != node_id]
        removed_ids = {t.id for t in self.state.transitions if t.references(node_id)}
        self.state.transitions = [t for t in self.state.transitions if t.id not in removed_ids]

        self._pending_moves.pop(node_id, None)
        self._persisted_positions.pop(node_id, None)

        if self.state.selected_node is not None and self.state.selected_node.id == node_id:
            self.state.selected_node = None
        selected = self.state.selected_transition
        if selected is not None and selected.id in removed_ids:
            self.state.selected_transition = None

    def _drop_transition(self, transition_id: str) -> None:
        self.state.transitions = [t for t in self.state.transitions if t.id != transition_id]
        selected = self.state.selected_transition
        if selected is not None and selected.id == transition_id:
            self.state.selected_transition = None
