"""Node definitions, registry and validation."""

from .definitions import ALL_NODES, NodeDefinition, NodeProperty
from .registry import NodeRegistry, get_node_registry
from .validation import validate_node

__all__ = [
    "ALL_NODES",
    "NodeDefinition",
    "NodeProperty",
    "NodeRegistry",
    "get_node_registry",
    "validate_node",
]
