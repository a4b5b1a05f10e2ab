"""
Flow Preview Simulator.

Dry-runs a flow graph locally: walks from the START node, executes each
node through a pluggable handler, suspends at QUESTION nodes until an
answer is submitted, and records a timeline of preview steps.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..config import NodeType, Settings, SimulatorState, StopReason, get_settings
from ..exceptions import MalformedCondition, MultipleStartNodes, NoStartNode, SimulatorError
from ..models import FlowNode, FlowPreviewStep, FlowTransition, NodeOutcome
from .conditions import ConditionEvaluator
from .handlers import (
    DEFAULT_HANDLERS,
    NodeHandler,
    PreviewContext,
    coerce_answer,
    validate_answer,
)
from .variables import substitute_variables

logger = logging.getLogger(__name__)


def order_transitions(transitions: Iterable[FlowTransition]) -> List[FlowTransition]:
    """
    Order outgoing transitions for evaluation.

    Higher priority first; among equal priorities conditional transitions
    come before unconditional ones; remaining ties keep stored order.
    """
    return sorted(transitions, key=lambda t: (-t.priority, not t.is_conditional))


class FlowSimulator:
    """
    Client-side preview of a flow.

    States: IDLE -> RUNNING -> {WAITING_FOR_INPUT, RUNNING} -> STOPPED.
    """

    def __init__(
        self,
        nodes: List[FlowNode],
        transitions: List[FlowTransition],
        settings: Optional[Settings] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        flow_id: str = "",
    ):
        self.settings = settings or get_settings()
        self.evaluator = evaluator or ConditionEvaluator()
        self.flow_id = flow_id

        self._nodes: Dict[str, FlowNode] = {n.id: n for n in nodes}
        self._start_candidates = [n for n in nodes if n.type == NodeType.START]
        self._outgoing: Dict[str, List[FlowTransition]] = {}
        for transition in transitions:
            self._outgoing.setdefault(transition.from_node_id, []).append(transition)

        self._handlers: Dict[NodeType, NodeHandler] = dict(DEFAULT_HANDLERS)

        # Bumped by stop/reset so suspended continuations can tell they are stale
        self._generation = 0
        self._step_count = 0

        self.state = SimulatorState.IDLE
        self.stop_reason: Optional[StopReason] = None
        self.steps: List[FlowPreviewStep] = []
        self.variables: Dict[str, Any] = {}
        self.visited_nodes: List[str] = []
        self.warnings: List[str] = []
        self.current_node_id: Optional[str] = None
        self.current_prompt: Optional[str] = None

    @property
    def current_node(self) -> Optional[FlowNode]:
        if self.current_node_id is None:
            return None
        return self._nodes.get(self.current_node_id)

    @property
    def is_running(self) -> bool:
        return self.state in (SimulatorState.RUNNING, SimulatorState.WAITING_FOR_INPUT)

    def register_executor(self, node_type: NodeType, handler: NodeHandler) -> None:
        """Register a custom node handler."""
        self._handlers[node_type] = handler
        logger.info(f"Registered preview handler for {node_type.value}")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, initial_variables: Optional[Dict[str, Any]] = None) -> None:
        """
        Start a preview run from the START node.

        Args:
            initial_variables: Variables seeded into the context

        Raises:
            NoStartNode: If the flow has no START node
            MultipleStartNodes: If the flow has more than one START node
        """
        if not self._start_candidates:
            raise NoStartNode()
        if len(self._start_candidates) > 1:
            raise MultipleStartNodes(len(self._start_candidates))

        self._clear()
        self.variables.update(initial_variables or {})
        self.state = SimulatorState.RUNNING

        logger.info(f"Preview started for flow {self.flow_id or '<unsaved>'}")
        await self._run(self._start_candidates[0].id, self._generation)

    def stop(self) -> None:
        """Halt the run, keeping its history."""
        if self.state == SimulatorState.IDLE:
            return
        self._generation += 1
        self.current_prompt = None
        self._finish(StopReason.STOPPED)

    def reset(self) -> None:
        """Discard history and variables and return to IDLE."""
        self._clear()
        self.state = SimulatorState.IDLE

    def _clear(self) -> None:
        self._generation += 1
        self._step_count = 0
        self.steps = []
        self.variables = {}
        self.visited_nodes = []
        self.warnings = []
        self.current_node_id = None
        self.current_prompt = None
        self.stop_reason = None

    def _finish(self, reason: StopReason) -> None:
        self.state = SimulatorState.STOPPED
        self.stop_reason = reason
        logger.info(f"Preview stopped ({reason.value}) after {len(self.steps)} steps")

    # =========================================================================
    # Input
    # =========================================================================

    async def submit_input(self, text: str) -> bool:
        """
        Answer the pending question.

        Returns:
            True if the answer was accepted, False if it failed validation

        Raises:
            SimulatorError: If the simulator is not waiting for input
        """
        if self.state != SimulatorState.WAITING_FOR_INPUT:
            raise SimulatorError(
                f"Cannot submit input while {self.state.value}",
                error_code="NOT_WAITING_FOR_INPUT",
            )

        node = self.current_node
        error = validate_answer(node.config, text)
        if error:
            self._record(node, input=text, output=error)
            return False

        self._record(node, input=text)
        variable_name = node.config.get("variableName")
        if variable_name:
            self.variables[variable_name] = coerce_answer(node.config, text)

        self.current_prompt = None
        self.state = SimulatorState.RUNNING
        await self._advance(node, None, self._generation)
        return True

    async def continue_flow(self) -> None:
        """
        Advance past the current node.

        While waiting for input this skips the pending question without
        storing an answer.
        """
        if not self.is_running or self.current_node is None:
            raise SimulatorError(
                f"Cannot continue while {self.state.value}",
                error_code="NOT_RUNNING",
            )

        self.current_prompt = None
        self.state = SimulatorState.RUNNING
        await self._advance(self.current_node, None, self._generation)

    # =========================================================================
    # Execution
    # =========================================================================

    async def _run(self, node_id: str, generation: int) -> None:
        while node_id is not None:
            if generation != self._generation or self.state != SimulatorState.RUNNING:
                return

            if self._step_count >= self.settings.simulator.max_steps:
                self.warnings.append(
                    f"Step limit of {self.settings.simulator.max_steps} reached"
                )
                self._finish(StopReason.STEP_LIMIT)
                return
            self._step_count += 1

            node = self._nodes.get(node_id)
            if node is None:
                self.warnings.append(f"Transition targets unknown node {node_id}")
                self._finish(StopReason.DEAD_END)
                return

            self.current_node_id = node.id
            self.visited_nodes.append(node.id)
            outcome = await self._execute(node)
            if outcome is None or generation != self._generation:
                return

            self.variables.update(outcome.variables)
            if outcome.output is not None:
                self._record(node, output=outcome.output)

            if outcome.wait_for_input:
                self.current_prompt = outcome.prompt
                self.state = SimulatorState.WAITING_FOR_INPUT
                return

            if outcome.terminal:
                self._finish(StopReason.COMPLETED)
                return

            if node.type == NodeType.MESSAGE and self.settings.simulator.message_delay_s > 0:
                await asyncio.sleep(self.settings.simulator.message_delay_s)
                if generation != self._generation or self.state != SimulatorState.RUNNING:
                    return

            node_id = self._resolve_next(node, outcome)

    async def _advance(self, node: FlowNode, outcome: Optional[NodeOutcome], generation: int) -> None:
        next_node_id = self._resolve_next(node, outcome)
        if next_node_id is not None:
            await self._run(next_node_id, generation)

    def _resolve_next(self, node: FlowNode, outcome: Optional[NodeOutcome]) -> Optional[str]:
        next_node_id = self.next_node_id(node.id, preferred=outcome.next_node_id if outcome else None)
        if next_node_id is None:
            self._finish(StopReason.DEAD_END)
        return next_node_id

    async def _execute(self, node: FlowNode) -> Optional[NodeOutcome]:
        handler = self._handlers.get(node.type)
        if handler is None:
            self.warnings.append(f"No handler for node type {node.type.value}")
            self._finish(StopReason.ERROR)
            return None

        context = PreviewContext(
            flow_id=self.flow_id,
            settings=self.settings.simulator,
            variables=self.variables,
            visited_nodes=self.visited_nodes,
        )
        config = substitute_variables(node.config, self.variables)

        try:
            return await handler(node, config, context)
        except Exception as e:
            logger.warning(f"Preview handler failed for node {node.id}: {e}")
            self.warnings.append(f"Node '{node.name}' failed: {e}")
            self._record(node, output=f"Error: {e}")
            self._finish(StopReason.ERROR)
            return None

    def next_node_id(self, node_id: str, preferred: Optional[str] = None) -> Optional[str]:
        """
        Pick the target of the first satisfied outgoing transition.

        Self-loops are skipped; malformed conditions count as false and
        are recorded in ``warnings``.
        """
        for transition in order_transitions(self._outgoing.get(node_id, [])):
            if transition.is_self_loop:
                continue
            if preferred is not None and transition.to_node_id != preferred:
                continue

            try:
                satisfied = self.evaluator.evaluate(transition.condition, self.variables)
            except MalformedCondition as e:
                logger.warning(f"Transition {transition.id}: {e}")
                self.warnings.append(str(e))
                satisfied = False

            if satisfied:
                return transition.to_node_id

        return None

    def _record(self, node: FlowNode, input: Any = None, output: Any = None) -> None:
        self.steps.append(
            FlowPreviewStep(
                node_id=node.id,
                node_name=node.name,
                node_type=node.type,
                input=input,
                output=output,
            )
        )

    def timeline(self) -> List[Dict[str, Any]]:
        return [step.to_dict() for step in self.steps]
