"""
Node Type Definitions.

Complete definitions for all available node types in the flow builder.
"""

from ..config import DataType, NodeCategory, NodeType
from ..models import NodeProperty, NodeTypeDefinition


HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]
LLM_MODELS = ["gpt-4", "gpt-4-turbo", "gpt-3.5-turbo", "claude-3-opus"]
VALIDATION_TYPES = ["text", "email", "number", "phone", "regex"]


def _options(values):
    return [{"value": v, "label": v} for v in values]


# =============================================================================
# Basic Nodes
# =============================================================================

BASIC_NODES = [
    NodeTypeDefinition(
        type=NodeType.START,
        category=NodeCategory.BASIC,
        label="Start",
        icon="pi pi-play",
        color="#10b981",
        description="Entry point of the flow",
        default_config={},
    ),
    NodeTypeDefinition(
        type=NodeType.MESSAGE,
        category=NodeCategory.BASIC,
        label="Message",
        icon="pi pi-comment",
        color="#3b82f6",
        description="Sends a message with {{var}} interpolation",
        default_config={"message": "Type your message here..."},
        properties=[
            NodeProperty(
                name="message",
                data_type=DataType.STRING,
                required=True,
                description="Message text, supports {{variable}} placeholders",
            ),
        ],
    ),
    NodeTypeDefinition(
        type=NodeType.END,
        category=NodeCategory.BASIC,
        label="End",
        icon="pi pi-stop",
        color="#ef4444",
        description="Ends the flow with a configurable message",
        default_config={"message": "End of flow"},
        properties=[
            NodeProperty(
                name="message",
                data_type=DataType.STRING,
                description="Optional closing message",
            ),
            NodeProperty(
                name="reason",
                data_type=DataType.STRING,
                description="Why the conversation ended",
            ),
        ],
    ),
]


# =============================================================================
# Interaction Nodes
# =============================================================================

INTERACTION_NODES = [
    NodeTypeDefinition(
        type=NodeType.QUESTION,
        category=NodeCategory.INTERACTION,
        label="Question",
        icon="pi pi-inbox",
        color="#8b5cf6",
        description="Captures user input with validation (email, number, phone, regex)",
        default_config={
            "variableName": "",
            "prompt": "What is your answer?",
            "required": True,
        },
        properties=[
            NodeProperty(
                name="variableName",
                data_type=DataType.STRING,
                required=True,
                description="Variable that stores the answer",
            ),
            NodeProperty(
                name="prompt",
                data_type=DataType.STRING,
                description="Question shown to the user",
            ),
            NodeProperty(
                name="required",
                data_type=DataType.BOOLEAN,
                default_value=True,
                description="Reject empty answers",
            ),
            NodeProperty(
                name="validationType",
                data_type=DataType.STRING,
                default_value="text",
                options=_options(VALIDATION_TYPES),
            ),
            NodeProperty(
                name="validationPattern",
                data_type=DataType.STRING,
                description="Pattern used by the regex validation type",
            ),
            NodeProperty(name="minLength", data_type=DataType.NUMBER),
            NodeProperty(name="maxLength", data_type=DataType.NUMBER),
            NodeProperty(
                name="errorMessage",
                data_type=DataType.STRING,
                description="Shown when the answer is rejected",
            ),
        ],
    ),
]


# =============================================================================
# Logic Nodes
# =============================================================================

LOGIC_NODES = [
    NodeTypeDefinition(
        type=NodeType.CONDITION,
        category=NodeCategory.LOGIC,
        label="Condition",
        icon="pi pi-filter",
        color="#f59e0b",
        description="Conditional branch (==, !=, >, <, contains, etc.)",
        # Branching lives in the outgoing transitions
        default_config={"conditions": []},
    ),
    NodeTypeDefinition(
        type=NodeType.ACTION,
        category=NodeCategory.LOGIC,
        label="Action",
        icon="pi pi-cog",
        color="#6366f1",
        description="Runs a custom action",
        default_config={"actionType": ""},
        properties=[
            NodeProperty(
                name="actionType",
                data_type=DataType.STRING,
                description="Action identifier (e.g. set_variable)",
            ),
            NodeProperty(
                name="parameters",
                data_type=DataType.OBJECT,
                default_value={},
            ),
            NodeProperty(
                name="resultVariable",
                data_type=DataType.STRING,
                description="Variable that stores the action result",
            ),
        ],
    ),
]


# =============================================================================
# Integration Nodes
# =============================================================================

INTEGRATION_NODES = [
    NodeTypeDefinition(
        type=NodeType.API_CALL,
        category=NodeCategory.INTEGRATION,
        label="API Call",
        icon="pi pi-globe",
        color="#06b6d4",
        description="External HTTP integration (GET/POST/PUT/DELETE)",
        default_config={"url": "", "method": "GET"},
        properties=[
            NodeProperty(
                name="url",
                data_type=DataType.STRING,
                required=True,
                description="Request URL, supports {{variable}} placeholders",
            ),
            NodeProperty(
                name="method",
                data_type=DataType.STRING,
                required=True,
                default_value="GET",
                options=_options(HTTP_METHODS),
            ),
            NodeProperty(name="headers", data_type=DataType.OBJECT),
            NodeProperty(name="body", data_type=DataType.ANY),
            NodeProperty(
                name="resultVariable",
                data_type=DataType.STRING,
                default_value="apiResponse",
            ),
            NodeProperty(
                name="timeout",
                data_type=DataType.NUMBER,
                default_value=10000,
                description="Timeout in milliseconds",
            ),
        ],
    ),
]


# =============================================================================
# Advanced Nodes
# =============================================================================

ADVANCED_NODES = [
    NodeTypeDefinition(
        type=NodeType.AI_RESPONSE,
        category=NodeCategory.ADVANCED,
        label="AI/LLM",
        icon="pi pi-sparkles",
        color="#ec4899",
        description="LLM call with a dynamic prompt",
        default_config={"prompt": "", "model": "gpt-4", "temperature": 0.7},
        properties=[
            NodeProperty(
                name="prompt",
                data_type=DataType.STRING,
                required=True,
                description="Prompt, supports {{variable}} placeholders",
            ),
            NodeProperty(
                name="model",
                data_type=DataType.STRING,
                default_value="gpt-4",
                options=_options(LLM_MODELS),
            ),
            NodeProperty(name="temperature", data_type=DataType.NUMBER, default_value=0.7),
            NodeProperty(name="maxTokens", data_type=DataType.NUMBER),
            NodeProperty(
                name="resultVariable",
                data_type=DataType.STRING,
                default_value="llmResponse",
            ),
        ],
    ),
]


ALL_NODES = BASIC_NODES + INTERACTION_NODES + LOGIC_NODES + INTEGRATION_NODES + ADVANCED_NODES
