"""
Preview Node Handlers.

Per-type execution semantics used by the preview simulator. Handlers
never contact real backends: AI and API nodes produce deterministic
mocked results so authors can exercise downstream conditions.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import NodeType, QuestionValidationType, SimulatorConfig
from ..models import FlowNode, NodeOutcome

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{7,20}$")
NUMBER_PATTERN = re.compile(r"^-?\d+(?:[.,]\d+)?$")


@dataclass
class PreviewContext:
    """Mutable context shared by the handlers of one preview run."""

    flow_id: str
    settings: SimulatorConfig
    variables: Dict[str, Any] = field(default_factory=dict)
    visited_nodes: List[str] = field(default_factory=list)


NodeHandler = Callable[[FlowNode, Dict[str, Any], PreviewContext], Awaitable[NodeOutcome]]


# =============================================================================
# Handlers
# =============================================================================


async def handle_start(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    return NodeOutcome()


async def handle_message(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    return NodeOutcome(output=config.get("message") or "Message...")


async def handle_question(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    return NodeOutcome(
        wait_for_input=True,
        prompt=config.get("prompt") or "What is your answer?",
    )


async def handle_condition(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    # Branch selection happens on the outgoing transitions
    return NodeOutcome()


async def handle_action(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    action_type = config.get("actionType") or ""
    parameters = config.get("parameters") or {}
    variables: Dict[str, Any] = {}

    if action_type == "set_variable":
        name = parameters.get("variable") or parameters.get("name")
        if name:
            variables[name] = parameters.get("value")
        result = {"variable": name, "value": parameters.get("value")}
        output = f"Variable '{name}' set"
    else:
        result = {
            "actionType": action_type,
            "parameters": parameters,
            "status": "success",
            "simulated": True,
        }
        output = f"Action '{action_type or 'unnamed'}' executed (simulated)"

    if config.get("resultVariable"):
        variables[config["resultVariable"]] = result

    return NodeOutcome(output=output, variables=variables)


async def handle_ai_response(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    model = config.get("model") or "gpt-4"
    prompt = config.get("prompt") or ""
    result_variable = (
        config.get("resultVariable") or context.settings.default_ai_result_variable
    )

    text = f"[{model}] Simulated response to: {prompt}"
    return NodeOutcome(output=text, variables={result_variable: text})


async def handle_api_call(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    method = (config.get("method") or "GET").upper()
    url = config.get("url") or ""
    result_variable = (
        config.get("resultVariable") or context.settings.default_api_result_variable
    )

    result = {
        "status": 200,
        "method": method,
        "url": url,
        "body": config.get("body"),
        "data": {},
        "simulated": True,
    }
    return NodeOutcome(
        output=f"{method} {url} -> 200 (simulated)",
        variables={result_variable: result},
    )


async def handle_end(
    node: FlowNode, config: Dict[str, Any], context: PreviewContext
) -> NodeOutcome:
    return NodeOutcome(output=config.get("message") or "End of flow", terminal=True)


DEFAULT_HANDLERS: Dict[NodeType, NodeHandler] = {
    NodeType.START: handle_start,
    NodeType.MESSAGE: handle_message,
    NodeType.QUESTION: handle_question,
    NodeType.CONDITION: handle_condition,
    NodeType.ACTION: handle_action,
    NodeType.AI_RESPONSE: handle_ai_response,
    NodeType.API_CALL: handle_api_call,
    NodeType.END: handle_end,
}


# =============================================================================
# Answer validation
# =============================================================================


def validate_answer(config: Dict[str, Any], text: str) -> Optional[str]:
    """
    Check a user's answer against a question node's rules.

    Returns:
        Error message, or None when the answer is acceptable
    """
    error_message = config.get("errorMessage")
    value = text.strip()

    if not value:
        if config.get("required", True):
            return error_message or "An answer is required"
        return None

    min_length = config.get("minLength")
    if min_length and len(value) < int(min_length):
        return error_message or f"Answer must be at least {min_length} characters"

    max_length = config.get("maxLength")
    if max_length and len(value) > int(max_length):
        return error_message or f"Answer must be at most {max_length} characters"

    validation_type = config.get("validationType") or QuestionValidationType.TEXT.value

    if validation_type == QuestionValidationType.EMAIL.value:
        if not EMAIL_PATTERN.match(value):
            return error_message or "Please enter a valid email address"
    elif validation_type == QuestionValidationType.NUMBER.value:
        if not NUMBER_PATTERN.match(value):
            return error_message or "Please enter a number"
    elif validation_type == QuestionValidationType.PHONE.value:
        if not PHONE_PATTERN.match(value):
            return error_message or "Please enter a valid phone number"
    elif validation_type == QuestionValidationType.REGEX.value:
        pattern = config.get("validationPattern") or ""
        try:
            matched = re.fullmatch(pattern, value) is not None
        except re.error:
            return error_message or "Answer cannot be validated"
        if not matched:
            return error_message or "Answer has an invalid format"

    return None


def coerce_answer(config: Dict[str, Any], text: str) -> Any:
    """Convert an accepted answer to the value stored in the context."""
    value = text.strip()
    if config.get("validationType") == QuestionValidationType.NUMBER.value and value:
        normalized = value.replace(",", ".")
        return float(normalized) if "." in normalized else int(normalized)
    return value
