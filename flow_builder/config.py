"""
Configuration for Flow Builder.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeCategory(str, Enum):
    """Node category types."""

    BASIC = "basic"
    INTERACTION = "interaction"
    LOGIC = "logic"
    INTEGRATION = "integration"
    ADVANCED = "advanced"


class NodeType(str, Enum):
    """Available node types."""

    START = "START"
    MESSAGE = "MESSAGE"
    QUESTION = "QUESTION"
    CONDITION = "CONDITION"
    ACTION = "ACTION"
    AI_RESPONSE = "AI_RESPONSE"
    API_CALL = "API_CALL"
    END = "END"


class BuilderActionType(str, Enum):
    """Undo/redo action tags."""

    ADD_NODE = "add_node"
    UPDATE_NODE = "update_node"
    DELETE_NODE = "delete_node"
    MOVE_NODE = "move_node"
    ADD_TRANSITION = "add_transition"
    UPDATE_TRANSITION = "update_transition"
    DELETE_TRANSITION = "delete_transition"


class SimulatorState(str, Enum):
    """Preview simulator states."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    STOPPED = "stopped"


class StopReason(str, Enum):
    """Why a preview run stopped."""

    COMPLETED = "completed"
    DEAD_END = "dead_end"
    STOPPED = "stopped"
    STEP_LIMIT = "step_limit"
    ERROR = "error"


class DataType(str, Enum):
    """Data types for node properties."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


class QuestionValidationType(str, Enum):
    """Answer validation for question nodes."""

    TEXT = "text"
    EMAIL = "email"
    NUMBER = "number"
    PHONE = "phone"
    REGEX = "regex"


class BuilderConfig(BaseSettings):
    """Builder session configuration."""

    model_config = SettingsConfigDict(env_prefix="BUILDER_")

    max_undo_actions: int = Field(default=50, description="Undo/redo stack capacity")
    autosave_delay_s: float = Field(default=1.5, description="Autosave debounce delay")
    autosave_settle_s: float = Field(
        default=0.0, description="Pause before marking the session clean"
    )
    max_notifications: int = Field(default=100, description="Notifications kept in memory")


class CanvasConfig(BaseSettings):
    """Canvas configuration."""

    model_config = SettingsConfigDict(env_prefix="CANVAS_")

    # Node geometry
    node_width: int = Field(default=180, description="Node width in pixels")
    node_height: int = Field(default=80, description="Node height in pixels")
    curve_offset: int = Field(default=50, description="Bezier control point offset")

    # Zoom settings
    min_zoom: float = Field(default=0.25, description="Minimum zoom level")
    max_zoom: float = Field(default=2.0, description="Maximum zoom level")
    default_zoom: float = Field(default=1.0, description="Default zoom level")

    # Validation
    max_nodes_per_flow: int = Field(default=500, description="Max nodes per flow")
    max_connections_per_node: int = Field(default=20, description="Max connections per node")


class SimulatorConfig(BaseSettings):
    """Preview simulator configuration."""

    model_config = SettingsConfigDict(env_prefix="SIMULATOR_")

    message_delay_s: float = Field(default=0.8, description="Pause after each message")
    max_steps: int = Field(default=500, description="Max nodes executed per run")
    default_ai_result_variable: str = Field(default="llmResponse")
    default_api_result_variable: str = Field(default="apiResponse")


class ResourceConfig(BaseSettings):
    """Flow resource API configuration."""

    model_config = SettingsConfigDict(env_prefix="FLOW_API_")

    base_url: str = Field(default="http://localhost:3000", description="API base URL")
    api_prefix: str = Field(default="/api/v1", description="API prefix")
    api_key: Optional[str] = Field(default=None, description="Bearer token")
    tenant_id: Optional[str] = Field(default=None, description="Tenant header value")
    timeout_s: float = Field(default=30.0, description="Request timeout")
    max_retries: int = Field(default=3, ge=1, description="Attempts on connect errors")
    retry_delay_s: float = Field(default=1.0, description="Base retry delay")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(default="flow-builder", description="Service name")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="info", description="Log level")

    # Sub-configurations
    builder: BuilderConfig = Field(default_factory=BuilderConfig)
    canvas: CanvasConfig = Field(default_factory=CanvasConfig)
    simulator: SimulatorConfig = Field(default_factory=SimulatorConfig)
    resource: ResourceConfig = Field(default_factory=ResourceConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
