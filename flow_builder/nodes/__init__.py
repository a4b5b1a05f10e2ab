"""
Node Types and Registry.

This module provides the node type definitions and registry
for the flow builder.
"""

from .registry import NodeRegistry, get_node_registry
from .definitions import (
    ALL_NODES,
    BASIC_NODES,
    INTERACTION_NODES,
    LOGIC_NODES,
    INTEGRATION_NODES,
    ADVANCED_NODES,
)

__all__ = [
    "NodeRegistry",
    "get_node_registry",
    "ALL_NODES",
    "BASIC_NODES",
    "INTERACTION_NODES",
    "LOGIC_NODES",
    "INTEGRATION_NODES",
    "ADVANCED_NODES",
]
