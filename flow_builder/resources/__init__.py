"""
Flow Resource Module.

Collaborators that persist flows, nodes and transitions.
"""

from .base import FlowResource
from .http import HttpFlowResource
from .memory import InMemoryFlowResource

__all__ = ["FlowResource", "HttpFlowResource", "InMemoryFlowResource"]
