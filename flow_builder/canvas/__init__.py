"""Canvas editing session, validation and geometry."""

from .geometry import path_between
from .history import ActionHistory
from .state import FlowBuilderState
from .validator import FlowValidator, NodeValidator

__all__ = [
    "path_between",
    "ActionHistory",
    "FlowBuilderState",
    "FlowValidator",
    "NodeValidator",
]
