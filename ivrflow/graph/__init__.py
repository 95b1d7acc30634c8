"""Edge routing and workflow graph validation."""

from .router import EdgeRouter, find_start_node, normalize_handle, resolve
from .validator import WorkflowValidator

__all__ = [
    "EdgeRouter",
    "find_start_node",
    "normalize_handle",
    "resolve",
    "WorkflowValidator",
]
