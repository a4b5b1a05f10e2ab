"""
Flow Validator.

Validates node configurations and flow structure.
"""

import logging
import re
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Set

from ..config import NodeType, QuestionValidationType, Settings, get_settings
from ..exceptions import MalformedCondition, UnknownNodeType
from ..executor.conditions import ConditionEvaluator
from ..models import (
    Flow,
    FlowNode,
    FlowTransition,
    NodeValidationResult,
    ValidationIssue,
    ValidationResult,
)
from ..nodes import NodeRegistry, get_node_registry
from ..nodes.definitions import HTTP_METHODS

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*\w+(?:\.\w+)*\s*\}\}")


class NodeValidator:
    """Validates the configuration of a single node."""

    def validate(self, node: FlowNode) -> NodeValidationResult:
        errors: List[str] = []
        warnings: List[str] = []
        config = node.config or {}

        if not node.name or not node.name.strip():
            errors.append("Node name is required")

        if node.type == NodeType.QUESTION:
            variable_name = config.get("variableName") or ""
            if not variable_name:
                errors.append("Variable name is required")
            elif not variable_name.isidentifier():
                errors.append(f"Variable name '{variable_name}' is not a valid identifier")
            if not (config.get("prompt") or "").strip():
                warnings.append("Question has no prompt")
            errors.extend(self._validate_answer_rules(config))

        elif node.type == NodeType.MESSAGE:
            if not (config.get("message") or "").strip():
                errors.append("Message is required")

        elif node.type == NodeType.AI_RESPONSE:
            if not (config.get("prompt") or "").strip():
                errors.append("Prompt is required")
            temperature = config.get("temperature")
            if temperature is not None:
                if not isinstance(temperature, (int, float)) or isinstance(temperature, bool):
                    errors.append("Temperature must be a number")
                elif not 0 <= temperature <= 2:
                    errors.append("Temperature must be between 0 and 2")

        elif node.type == NodeType.API_CALL:
            url = config.get("url") or ""
            if not url:
                errors.append("URL is required")
            elif not URL_PATTERN.match(url) and not PLACEHOLDER_PATTERN.search(url):
                errors.append("URL must start with http:// or https://")
            method = (config.get("method") or "GET").upper()
            if method not in HTTP_METHODS:
                errors.append(f"Unsupported HTTP method: {method}")

        elif node.type == NodeType.ACTION:
            if not config.get("actionType"):
                warnings.append("Action type is not set")

        elif node.type == NodeType.END:
            if not (config.get("message") or "").strip():
                warnings.append("End message is empty")

        return NodeValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def _validate_answer_rules(self, config: Dict) -> List[str]:
        errors = []

        validation_type = config.get("validationType")
        if validation_type and validation_type not in {v.value for v in QuestionValidationType}:
            errors.append(f"Unknown validation type: {validation_type}")

        if validation_type == QuestionValidationType.REGEX.value:
            pattern = config.get("validationPattern")
            if not pattern:
                errors.append("Validation pattern is required for regex validation")
            else:
                try:
                    re.compile(pattern)
                except re.error as e:
                    errors.append(f"Invalid validation pattern: {e}")

        min_length = config.get("minLength")
        max_length = config.get("maxLength")
        if min_length is not None and max_length is not None and min_length > max_length:
            errors.append("minLength cannot exceed maxLength")

        return errors


class FlowValidator:
    """
    Validates flow structure and configuration.

    Checks:
    - Structural integrity (single START, duplicate ids)
    - Node configuration
    - Transitions (dangling endpoints, self-loops, priorities, conditions)
    - Logic flow (unreachable nodes, loops, dead ends)
    - Resource limits
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[NodeRegistry] = None,
        node_validator: Optional[NodeValidator] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or get_node_registry()
        self.node_validator = node_validator or NodeValidator()
        self.evaluator = evaluator or ConditionEvaluator()

    def validate_flow(self, flow: Flow) -> ValidationResult:
        return self.validate(flow.nodes, flow.transitions)

    def validate(
        self,
        nodes: List[FlowNode],
        transitions: List[FlowTransition],
    ) -> ValidationResult:
        """
        Validate a flow graph.

        Returns:
            ValidationResult with issues found
        """
        issues: List[ValidationIssue] = []

        issues.extend(self._validate_structure(nodes, transitions))
        issues.extend(self._validate_nodes(nodes))
        issues.extend(self._validate_transitions(nodes, transitions))
        issues.extend(self._validate_logic(nodes, transitions))
        issues.extend(self._validate_limits(nodes, transitions))

        valid = all(i.severity != "error" for i in issues)
        if not valid:
            logger.debug(f"Flow validation found {len(issues)} issues")

        return ValidationResult(valid=valid, issues=issues, checked_at=datetime.utcnow())

    def _validate_structure(
        self,
        nodes: List[FlowNode],
        transitions: List[FlowTransition],
    ) -> List[ValidationIssue]:
        issues = []

        start_nodes = [n for n in nodes if n.type == NodeType.START]
        if not start_nodes:
            issues.append(ValidationIssue(severity="error", message="Flow must have a START node"))
        for extra in start_nodes[1:]:
            issues.append(
                ValidationIssue(
                    severity="error",
                    message="Flow has more than one START node",
                    node_id=extra.id,
                )
            )

        for node_id, count in Counter(n.id for n in nodes).items():
            if count > 1:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        message=f"Duplicate node ID: {node_id}",
                        node_id=node_id,
                    )
                )

        for transition_id, count in Counter(t.id for t in transitions).items():
            if count > 1:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        message=f"Duplicate transition ID: {transition_id}",
                        transition_id=transition_id,
                    )
                )

        return issues

    def _validate_nodes(self, nodes: List[FlowNode]) -> List[ValidationIssue]:
        issues = []

        for node in nodes:
            try:
                self.registry.definition_of(node.type)
            except UnknownNodeType:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        message=f"Unknown node type: {node.type.value}",
                        node_id=node.id,
                    )
                )
                continue

            result = self.node_validator.validate(node)
            for error in result.errors:
                issues.append(ValidationIssue(severity="error", message=error, node_id=node.id))
            for warning in result.warnings:
                issues.append(ValidationIssue(severity="warning", message=warning, node_id=node.id))

        return issues

    def _validate_transitions(
        self,
        nodes: List[FlowNode],
        transitions: List[FlowTransition],
    ) -> List[ValidationIssue]:
        issues = []
        node_ids = {n.id for n in nodes}
        seen_edges: Set[tuple] = set()

        for transition in transitions:
            if transition.from_node_id not in node_ids:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        message=f"Transition source node not found: {transition.from_node_id}",
                        transition_id=transition.id,
                    )
                )
            if transition.to_node_id not in node_ids:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        message=f"Transition target node not found: {transition.to_node_id}",
                        transition_id=transition.id,
                    )
                )

            if transition.is_self_loop:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        message="Node has a transition to itself",
                        node_id=transition.from_node_id,
                        transition_id=transition.id,
                    )
                )

            if not 0 <= transition.priority <= 100:
                issues.append(
                    ValidationIssue(
                        severity="error",
                        message=f"Priority must be between 0 and 100 (got {transition.priority})",
                        transition_id=transition.id,
                    )
                )

            try:
                self.evaluator.parse(transition.condition)
            except MalformedCondition as e:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        message=f"{e.message}; it will never match",
                        transition_id=transition.id,
                    )
                )

            edge = (transition.from_node_id, transition.to_node_id, (transition.condition or "").strip())
            if edge in seen_edges:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        message="Duplicate transition between the same nodes",
                        transition_id=transition.id,
                    )
                )
            seen_edges.add(edge)

        return issues

    def _validate_logic(
        self,
        nodes: List[FlowNode],
        transitions: List[FlowTransition],
    ) -> List[ValidationIssue]:
        issues = []

        graph: Dict[str, List[str]] = {n.id: [] for n in nodes}
        for transition in transitions:
            if transition.from_node_id in graph and not transition.is_self_loop:
                graph[transition.from_node_id].append(transition.to_node_id)

        # BFS from START
        reachable: Set[str] = set()
        queue = [n.id for n in nodes if n.type == NodeType.START]
        while queue:
            current = queue.pop(0)
            if current in reachable:
                continue
            reachable.add(current)
            queue.extend(graph.get(current, []))

        if any(n.type == NodeType.START for n in nodes):
            for node in nodes:
                if node.id not in reachable:
                    issues.append(
                        ValidationIssue(
                            severity="warning",
                            message="Node is not reachable from START",
                            node_id=node.id,
                        )
                    )

        for node in nodes:
            outgoing = graph.get(node.id, [])
            if node.type == NodeType.END and outgoing:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        message="END node has outgoing transitions that are never followed",
                        node_id=node.id,
                    )
                )
            elif node.type != NodeType.END and not outgoing:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        message="Node has no outgoing transitions",
                        node_id=node.id,
                    )
                )

        issues.extend(self._detect_loops(graph))

        return issues

    def _detect_loops(self, graph: Dict[str, List[str]]) -> List[ValidationIssue]:
        """Detect cycles, which preview runs cut off at the step limit."""
        issues = []
        visited: Set[str] = set()
        rec_stack: Set[str] = set()

        def dfs(node_id: str) -> None:
            visited.add(node_id)
            rec_stack.add(node_id)

            for neighbor in graph.get(node_id, []):
                if neighbor not in visited:
                    dfs(neighbor)
                elif neighbor in rec_stack:
                    issues.append(
                        ValidationIssue(
                            severity="warning",
                            message="Potential infinite loop detected",
                            node_id=neighbor,
                        )
                    )

            rec_stack.remove(node_id)

        for node_id in graph:
            if node_id not in visited:
                dfs(node_id)

        return issues

    def _validate_limits(
        self,
        nodes: List[FlowNode],
        transitions: List[FlowTransition],
    ) -> List[ValidationIssue]:
        issues = []
        canvas_config = self.settings.canvas

        if len(nodes) > canvas_config.max_nodes_per_flow:
            issues.append(
                ValidationIssue(
                    severity="error",
                    message=f"Flow exceeds maximum nodes ({len(nodes)} > {canvas_config.max_nodes_per_flow})",
                )
            )

        degree: Counter = Counter()
        for transition in transitions:
            degree[transition.from_node_id] += 1
            degree[transition.to_node_id] += 1

        for node in nodes:
            total = degree[node.id]
            if total > canvas_config.max_connections_per_node:
                issues.append(
                    ValidationIssue(
                        severity="warning",
                        message=f"Node has too many transitions ({total} > {canvas_config.max_connections_per_node})",
                        node_id=node.id,
                    )
                )

        return issues
