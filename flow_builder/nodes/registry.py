"""
Node Registry.

Manages registration and lookup of node types.
"""

import copy
import logging
from functools import lru_cache
from typing import Any, Dict, List, Union

from ..config import NodeCategory, NodeType
from ..exceptions import UnknownNodeType
from ..models import NodeTypeDefinition
from .definitions import ALL_NODES

logger = logging.getLogger(__name__)


class NodeRegistry:
    """
    Registry for node type definitions.

    Provides lookup, filtering and default configurations of node types.
    """

    def __init__(self):
        """Initialize registry with all node definitions."""
        self._nodes: Dict[NodeType, NodeTypeDefinition] = {}
        self._by_category: Dict[NodeCategory, List[NodeTypeDefinition]] = {}

        # Register all built-in nodes
        for node_def in ALL_NODES:
            self.register(node_def)

        logger.info(f"Registered {len(self._nodes)} node types")

    def register(self, node_def: NodeTypeDefinition) -> None:
        """Register a node definition."""
        if node_def.type in self._nodes:
            logger.warning(f"Overwriting existing node type: {node_def.type.value}")
            self._by_category[self._nodes[node_def.type].category].remove(
                self._nodes[node_def.type]
            )

        self._nodes[node_def.type] = node_def

        # Index by category
        if node_def.category not in self._by_category:
            self._by_category[node_def.category] = []
        self._by_category[node_def.category].append(node_def)

    def definition_of(self, node_type: Union[NodeType, str]) -> NodeTypeDefinition:
        """
        Get node definition by type.

        Raises:
            UnknownNodeType: If the type is not registered
        """
        try:
            key = node_type if isinstance(node_type, NodeType) else NodeType(str(node_type).upper())
        except ValueError:
            raise UnknownNodeType(node_type)

        node_def = self._nodes.get(key)
        if node_def is None:
            raise UnknownNodeType(node_type)
        return node_def

    def default_config(self, node_type: Union[NodeType, str]) -> Dict[str, Any]:
        """Get a fresh copy of the default configuration for a node type."""
        return copy.deepcopy(self.definition_of(node_type).default_config)

    def list_all(self) -> List[NodeTypeDefinition]:
        """List all registered node definitions."""
        return list(self._nodes.values())

    def implemented_types(self) -> List[NodeTypeDefinition]:
        """List node types usable in the editor."""
        return [d for d in self._nodes.values() if d.is_implemented]

    def by_category(self, category: Union[NodeCategory, str]) -> List[NodeTypeDefinition]:
        """List implemented nodes in a specific category."""
        category = NodeCategory(category)
        return [d for d in self._by_category.get(category, []) if d.is_implemented]

    def get_categories(self) -> List[NodeCategory]:
        """Get all categories with registered nodes."""
        return list(self._by_category.keys())

    def search(self, query: str) -> List[NodeTypeDefinition]:
        """Search nodes by label, description or type."""
        query = query.lower()

        return [
            node_def
            for node_def in self._nodes.values()
            if query in node_def.label.lower()
            or query in node_def.description.lower()
            or query in node_def.type.value.lower()
        ]

    def to_catalog(self) -> Dict[str, List[Dict]]:
        """
        Export registry as a catalog organized by category.

        Returns:
            Dict mapping category names to lists of node definitions
        """
        catalog = {}

        for category in NodeCategory:
            nodes = self.by_category(category)
            if nodes:
                catalog[category.value] = [n.to_dict() for n in nodes]

        return catalog

    def is_registered(self, type_name: str) -> bool:
        """Check if a node type is registered."""
        try:
            self.definition_of(type_name)
            return True
        except UnknownNodeType:
            return False


@lru_cache
def get_node_registry() -> NodeRegistry:
    """Get the shared node registry."""
    return NodeRegistry()
