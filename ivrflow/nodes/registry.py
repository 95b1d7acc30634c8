"""
Node Registry.

Manages registration and lookup of node types.
"""

from functools import lru_cache
from typing import Dict, List, Optional

import structlog

from ..config import NodeCategory, NodeType
from .definitions import ALL_NODES, NodeDefinition

logger = structlog.get_logger(__name__)


class NodeRegistry:
    """
    Registry for node type definitions.

    Provides lookup and filtering of available node types.
    """

    def __init__(self):
        self._nodes: Dict[NodeType, NodeDefinition] = {}
        self._by_category: Dict[NodeCategory, List[NodeDefinition]] = {}

        for node_def in ALL_NODES:
            self.register(node_def)

        logger.debug("node_types_registered", count=len(self._nodes))

    def register(self, node_def: NodeDefinition) -> None:
        """Register a node definition."""
        if node_def.type in self._nodes:
            logger.warning("node_type_overwritten", node_type=node_def.type.value)
            self._by_category[self._nodes[node_def.type].category].remove(self._nodes[node_def.type])

        self._nodes[node_def.type] = node_def
        self._by_category.setdefault(node_def.category, []).append(node_def)

    def get(self, node_type: NodeType) -> Optional[NodeDefinition]:
        """Get node definition by type."""
        return self._nodes.get(node_type)

    def get_by_name(self, type_name: str) -> Optional[NodeDefinition]:
        """Get node definition by type name string."""
        try:
            return self.get(NodeType(type_name))
        except ValueError:
            return None

    def list_all(self) -> List[NodeDefinition]:
        return list(self._nodes.values())

    def list_by_category(self, category: NodeCategory) -> List[NodeDefinition]:
        return self._by_category.get(category, [])

    def handles_for(self, node_type: NodeType) -> List[str]:
        """Outcome handles a node type can emit."""
        node_def = self.get(node_type)
        return list(node_def.handles) if node_def else []

    def to_catalog(self) -> Dict[str, List[Dict]]:
        """
        Export registry as a catalog organized by category.

        Returns:
            Dict mapping category names to lists of node definitions
        """
        catalog = {}
        for category in NodeCategory:
            nodes = self.list_by_category(category)
            if nodes:
                catalog[category.value] = [n.to_dict() for n in nodes]
        return catalog


@lru_cache
def get_node_registry() -> NodeRegistry:
    """Get the singleton node registry."""
    return NodeRegistry()
