"""
Data Models for Flow Builder.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .config import BuilderActionType, DataType, NodeCategory, NodeType


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the API."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_node_type(value: Any) -> NodeType:
    """Parse a node type, accepting any letter case."""
    if isinstance(value, NodeType):
        return value
    return NodeType(str(value).upper())


def make_position(x: Any = 0, y: Any = 0) -> Dict[str, float]:
    """Build a canvas position dict."""
    return {"x": float(x or 0), "y": float(y or 0)}


# =============================================================================
# Node Type Models
# =============================================================================


@dataclass
class NodeProperty:
    """Definition of a configurable node property."""

    name: str
    data_type: DataType
    required: bool = False
    default_value: Any = None
    description: str = ""
    options: Optional[List[Dict[str, Any]]] = None  # For select/enum


@dataclass
class NodeTypeDefinition:
    """Definition of a node type."""

    type: NodeType
    category: NodeCategory
    label: str
    icon: str
    color: str
    description: str
    is_implemented: bool = True
    default_config: Dict[str, Any] = field(default_factory=dict)
    properties: List[NodeProperty] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "category": self.category.value,
            "label": self.label,
            "icon": self.icon,
            "color": self.color,
            "description": self.description,
            "isImplemented": self.is_implemented,
            "defaultConfig": copy.deepcopy(self.default_config),
            "properties": [
                {
                    "name": p.name,
                    "dataType": p.data_type.value,
                    "required": p.required,
                    "defaultValue": p.default_value,
                    "description": p.description,
                    "options": p.options,
                }
                for p in self.properties
            ],
        }


# =============================================================================
# Graph Models
# =============================================================================


@dataclass
class FlowNode:
    """One step in a flow graph."""

    id: str
    flow_id: str
    name: str
    type: NodeType
    position: Dict[str, float] = field(default_factory=make_position)  # {x, y}
    config: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "flowId": self.flow_id,
            "name": self.name,
            "type": self.type.value,
            "position": dict(self.position),
            "config": copy.deepcopy(self.config),
            "metadata": copy.deepcopy(self.metadata),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlowNode":
        position = data.get("position")
        if not isinstance(position, dict):
            # Older API revisions send flat coordinates
            position = {"x": data.get("positionX"), "y": data.get("positionY")}

        return cls(
            id=str(data["id"]),
            flow_id=str(data.get("flowId", "")),
            name=data.get("name") or data.get("label") or "",
            type=parse_node_type(data["type"]),
            position=make_position(position.get("x"), position.get("y")),
            config=copy.deepcopy(data.get("config") or {}),
            metadata=copy.deepcopy(data.get("metadata") or {}),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
        )


@dataclass
class FlowTransition:
    """Directed, optionally conditional edge between two nodes."""

    id: str
    flow_id: str
    from_node_id: str
    to_node_id: str
    condition: Optional[str] = None
    priority: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def label(self) -> Optional[str]:
        return self.metadata.get("label")

    @property
    def is_conditional(self) -> bool:
        return bool(self.condition and self.condition.strip())

    @property
    def is_self_loop(self) -> bool:
        return self.from_node_id == self.to_node_id

    def references(self, node_id: str) -> bool:
        return self.from_node_id == node_id or self.to_node_id == node_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "flowId": self.flow_id,
            "fromNodeId": self.from_node_id,
            "toNodeId": self.to_node_id,
            "condition": self.condition,
            "priority": self.priority,
            "metadata": copy.deepcopy(self.metadata),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlowTransition":
        metadata = copy.deepcopy(data.get("metadata") or {})
        if data.get("label") and "label" not in metadata:
            metadata["label"] = data["label"]

        return cls(
            id=str(data["id"]),
            flow_id=str(data.get("flowId", "")),
            from_node_id=str(data["fromNodeId"]),
            to_node_id=str(data["toNodeId"]),
            condition=data.get("condition") or None,
            priority=int(data.get("priority") or 0),
            metadata=metadata,
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
        )


@dataclass
class FlowConfig:
    """Runtime settings of a flow."""

    timeout: Optional[int] = None
    max_retries: Optional[int] = None
    fallback_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeout": self.timeout,
            "maxRetries": self.max_retries,
            "fallbackMessage": self.fallback_message,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FlowConfig":
        data = data or {}
        return cls(
            timeout=data.get("timeout"),
            max_retries=data.get("maxRetries"),
            fallback_message=data.get("fallbackMessage"),
        )


@dataclass
class Flow:
    """Named, versioned flow definition with its graph."""

    id: str
    name: str
    slug: str = ""
    tenant_id: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    version: int = 1
    config: FlowConfig = field(default_factory=FlowConfig)
    metadata: Dict[str, Any] = field(default_factory=dict)
    nodes: List[FlowNode] = field(default_factory=list)
    transitions: List[FlowTransition] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def start_nodes(self) -> List[FlowNode]:
        return [n for n in self.nodes if n.type == NodeType.START]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "isActive": self.is_active,
            "isDefault": self.is_default,
            "version": self.version,
            "config": self.config.to_dict(),
            "metadata": copy.deepcopy(self.metadata),
            "nodes": [n.to_dict() for n in self.nodes],
            "transitions": [t.to_dict() for t in self.transitions],
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
            "deletedAt": _isoformat(self.deleted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Flow":
        flow_id = str(data["id"])
        nodes = [FlowNode.from_dict(n) for n in data.get("nodes") or []]
        transitions = [FlowTransition.from_dict(t) for t in data.get("transitions") or []]

        for node in nodes:
            node.flow_id = node.flow_id or flow_id
        for transition in transitions:
            transition.flow_id = transition.flow_id or flow_id

        return cls(
            id=flow_id,
            name=data.get("name", ""),
            slug=data.get("slug", ""),
            tenant_id=data.get("tenantId"),
            description=data.get("description"),
            is_active=data.get("isActive", True),
            is_default=data.get("isDefault", False),
            version=int(data.get("version") or 1),
            config=FlowConfig.from_dict(data.get("config")),
            metadata=copy.deepcopy(data.get("metadata") or {}),
            nodes=nodes,
            transitions=transitions,
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
            deleted_at=parse_datetime(data.get("deletedAt")),
        )


# =============================================================================
# Builder Session Models
# =============================================================================


@dataclass
class BuilderAction:
    """Entry of the undo/redo log."""

    type: BuilderActionType
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class BuilderState:
    """Volatile state of one editing session."""

    flow: Optional[Flow] = None
    nodes: List[FlowNode] = field(default_factory=list)
    transitions: List[FlowTransition] = field(default_factory=list)
    selected_node: Optional[FlowNode] = None
    selected_transition: Optional[FlowTransition] = None
    canvas_offset: Dict[str, float] = field(default_factory=make_position)
    canvas_zoom: float = 1.0
    is_dirty: bool = False
    is_saving: bool = False
    is_loading: bool = False
    last_saved: Optional[datetime] = None

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def get_transition(self, transition_id: str) -> Optional[FlowTransition]:
        return next((t for t in self.transitions if t.id == transition_id), None)


@dataclass
class Notification:
    """User-facing notice about a builder operation."""

    severity: str  # info, success, warn, error
    summary: str
    detail: str = ""
    operation: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


# =============================================================================
# Validation Models
# =============================================================================


@dataclass
class NodeValidationResult:
    """Result of validating a single node."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ValidationIssue:
    """A validation issue found in a flow."""

    severity: str  # error, warning
    message: str
    node_id: Optional[str] = None
    transition_id: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of flow validation."""

    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    checked_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]


# =============================================================================
# Geometry Models
# =============================================================================


@dataclass
class ConnectionPoint:
    """Anchor of a transition on a node."""

    node_id: str
    position: str  # top, bottom, left, right
    x: float
    y: float


@dataclass
class TransitionPath:
    """Rendered path of a transition."""

    from_point: ConnectionPoint
    to_point: ConnectionPoint
    svg_path: str
    midpoint: Dict[str, float]


# =============================================================================
# Preview Models
# =============================================================================


@dataclass(frozen=True)
class FlowPreviewStep:
    """One entry of the preview timeline."""

    node_id: str
    node_name: str
    node_type: NodeType
    input: Any = None
    output: Any = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeName": self.node_name,
            "nodeType": self.node_type.value,
            "input": self.input,
            "output": self.output,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class NodeOutcome:
    """Result from executing a single node in the preview."""

    output: Any = None
    variables: Dict[str, Any] = field(default_factory=dict)
    next_node_id: Optional[str] = None  # Only follow transitions into this node
    wait_for_input: bool = False
    prompt: Optional[str] = None
    terminal: bool = False


# =============================================================================
# API Request Models
# =============================================================================


class ApiModel(BaseModel):
    """Base for request bodies sent in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


def _check_position(value: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
    if value is None:
        return value
    if "x" not in value or "y" not in value:
        raise ValueError("position requires x and y")
    return make_position(value["x"], value["y"])


class CreateFlowRequest(ApiModel):
    """Request to create a new flow."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    config: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateFlowRequest(ApiModel):
    """Request to update a flow."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateNodeRequest(ApiModel):
    """Request to create a node."""

    flow_id: str
    name: str = Field(..., min_length=1)
    type: NodeType
    position: Dict[str, float]
    config: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("position")
    @classmethod
    def validate_position(cls, value: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        return _check_position(value)


class UpdateNodeRequest(ApiModel):
    """Partial node update."""

    name: Optional[str] = Field(default=None, min_length=1)
    position: Optional[Dict[str, float]] = None
    config: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("position")
    @classmethod
    def validate_position(cls, value: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        return _check_position(value)


class CreateTransitionRequest(ApiModel):
    """Request to create a transition."""

    flow_id: str
    from_node_id: str
    to_node_id: str
    condition: Optional[str] = None
    priority: int = Field(default=0, ge=0, le=100)
    metadata: Optional[Dict[str, Any]] = None


class UpdateTransitionRequest(ApiModel):
    """Partial transition update."""

    condition: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=0, le=100)
    metadata: Optional[Dict[str, Any]] = None


__all__ = [
    # Node types
    "NodeProperty",
    "NodeTypeDefinition",
    # Graph
    "FlowNode",
    "FlowTransition",
    "FlowConfig",
    "Flow",
    # Builder
    "BuilderAction",
    "BuilderState",
    "Notification",
    # Validation
    "NodeValidationResult",
    "ValidationIssue",
    "ValidationResult",
    # Geometry
    "ConnectionPoint",
    "TransitionPath",
    # Preview
    "FlowPreviewStep",
    "NodeOutcome",
    # API
    "CreateFlowRequest",
    "UpdateFlowRequest",
    "CreateNodeRequest",
    "UpdateNodeRequest",
    "CreateTransitionRequest",
    "UpdateTransitionRequest",
]
