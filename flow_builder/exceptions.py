"""Exceptions for Flow Builder."""

from typing import Any, List, Optional


class FlowBuilderError(Exception):
    """Base exception for flow builder errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self):
        parts = [self.message]
        if self.error_code:
            parts.append(f"[{self.error_code}]")
        return " ".join(parts)


# =============================================================================
# Transport
# =============================================================================


class ResourceError(FlowBuilderError):
    """Raised when the flow resource API returns an error."""

    def __init__(
        self,
        message: str = "Flow API error",
        status_code: Optional[int] = None,
        error_code: str = "RESOURCE_ERROR",
    ):
        super().__init__(message, error_code=error_code)
        self.status_code = status_code

    def __str__(self):
        parts = [self.message]
        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")
        if self.error_code:
            parts.append(f"[{self.error_code}]")
        return " ".join(parts)


class NotFoundError(ResourceError):
    """Raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404, error_code="NOT_FOUND")


class ConflictError(ResourceError):
    """Raised when there's a resource conflict."""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, status_code=409, error_code="CONFLICT")


class ResourceValidationError(ResourceError):
    """Raised when the API rejects a request body."""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[List[dict]] = None,
    ):
        super().__init__(message, status_code=422, error_code="VALIDATION_ERROR")
        self.errors = errors or []


class ResourceUnavailableError(ResourceError):
    """Raised when the API cannot be reached."""

    def __init__(self, message: str = "Flow API unavailable"):
        super().__init__(message, error_code="UNAVAILABLE")


# =============================================================================
# Builder
# =============================================================================


class LoadFailure(FlowBuilderError):
    """Raised when a flow cannot be loaded into the builder."""

    def __init__(self, flow_id: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not load flow {flow_id}{detail}", error_code="LOAD_FAILURE")
        self.flow_id = flow_id
        self.cause = cause


class MutationFailure(FlowBuilderError):
    """A node/transition create, update or delete request failed."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"{operation} failed{detail}", error_code="MUTATION_FAILURE")
        self.operation = operation
        self.cause = cause


class ValidationFailure(FlowBuilderError):
    """Raised when a node fails validation and must not be persisted."""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message, error_code="VALIDATION_FAILURE")
        self.result = result


class UnknownNodeType(FlowBuilderError):
    """Raised for node types missing from the registry."""

    def __init__(self, node_type: Any):
        super().__init__(f"Unknown node type: {node_type}", error_code="UNKNOWN_NODE_TYPE")
        self.node_type = node_type


class InvalidTransition(FlowBuilderError):
    """Raised when a transition would break graph invariants."""

    def __init__(self, message: str):
        super().__init__(message, error_code="INVALID_TRANSITION")


class NodeNotFound(FlowBuilderError):
    """Raised when a node id is not part of the loaded flow."""

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}", error_code="NODE_NOT_FOUND")
        self.node_id = node_id


class TransitionNotFound(FlowBuilderError):
    """Raised when a transition id is not part of the loaded flow."""

    def __init__(self, transition_id: str):
        super().__init__(
            f"Transition not found: {transition_id}", error_code="TRANSITION_NOT_FOUND"
        )
        self.transition_id = transition_id


class NoFlowLoaded(FlowBuilderError):
    """Raised when an edit is attempted before a flow is loaded."""

    def __init__(self, message: str = "No flow loaded"):
        super().__init__(message, error_code="NO_FLOW")


# =============================================================================
# Simulator
# =============================================================================


class SimulatorError(FlowBuilderError):
    """Raised for operations that are illegal in the simulator's state."""

    def __init__(self, message: str, error_code: str = "SIMULATOR_ERROR"):
        super().__init__(message, error_code=error_code)


class NoStartNode(SimulatorError):
    """Raised when a flow has no START node."""

    def __init__(self, message: str = "No START node found in flow"):
        super().__init__(message, error_code="NO_START_NODE")


class MultipleStartNodes(SimulatorError):
    """Raised when a flow has more than one START node."""

    def __init__(self, count: int):
        super().__init__(
            f"Flow has {count} START nodes, expected exactly one",
            error_code="MULTIPLE_START_NODES",
        )
        self.count = count


class MalformedCondition(FlowBuilderError):
    """Raised when a transition condition cannot be parsed."""

    def __init__(self, condition: str, reason: str):
        super().__init__(
            f"Malformed condition {condition!r}: {reason}", error_code="MALFORMED_CONDITION"
        )
        self.condition = condition
        self.reason = reason
