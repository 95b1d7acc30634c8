"""
Edge Router.

Resolves the next node id from a source node id and an outcome handle.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from ..config import ENTRY_NODE_TYPES
from ..models import Edge, Node, Workflow


# Handle labels that front-ends write for the default branch
DEFAULT_HANDLES = ("next", "default")


def normalize_handle(handle: Optional[str]) -> Optional[str]:
    """Map the default-branch spellings onto ``None``."""
    if handle is None:
        return None
    handle = str(handle).strip()
    if handle == "" or handle in DEFAULT_HANDLES:
        return None
    return handle


def resolve(edges: Iterable[Edge], source_node_id: str, handle: Optional[str] = None) -> Optional[str]:
    """
    Resolve the target of the first edge leaving ``source_node_id`` with ``handle``.

    A ``None`` handle matches only edges whose handle is unset. Ties are
    broken by list order.

    Returns:
        Target node id, or None when no edge matches
    """
    wanted = normalize_handle(handle)
    for edge in edges:
        if edge.source == source_node_id and normalize_handle(edge.source_handle) == wanted:
            return edge.target
    return None


class EdgeRouter:
    """
    Indexed router over one workflow's edges.

    Builds a ``source:handle`` lookup once so handlers can resolve several
    candidate handles cheaply.
    """

    def __init__(self, edges: Sequence[Edge]):
        self._edges = list(edges)
        self._lookup: Dict[str, List[Edge]] = {}

        for edge in self._edges:
            key = self._key(edge.source, edge.source_handle)
            self._lookup.setdefault(key, []).append(edge)

    @staticmethod
    def _key(source: str, handle: Optional[str]) -> str:
        return f"{source}:{normalize_handle(handle) or ''}"

    def resolve(self, source_node_id: str, handle: Optional[str] = None) -> Optional[str]:
        """Target for exactly ``(source, handle)``, first match wins."""
        matches = self._lookup.get(self._key(source_node_id, handle), [])
        return matches[0].target if matches else None

    def resolve_first(self, source_node_id: str, handles: Iterable[Optional[str]]) -> Optional[str]:
        """Target for the first handle in ``handles`` that has an edge."""
        for handle in handles:
            target = self.resolve(source_node_id, handle)
            if target is not None:
                return target
        return None

    def outgoing(self, source_node_id: str) -> List[Edge]:
        return [e for e in self._edges if e.source == source_node_id]

    def incoming(self, target_node_id: str) -> List[Edge]:
        return [e for e in self._edges if e.target == target_node_id]


def find_start_node(workflow: Workflow) -> Optional[Node]:
    """
    Designated entry node of a workflow.

    The first greeting/audio node without incoming edges, falling back to
    the first node.
    """
    if not workflow.nodes:
        return None

    targets = {e.target for e in workflow.edges}
    for node in workflow.nodes:
        if node.type in ENTRY_NODE_TYPES and node.id not in targets:
            return node
    return workflow.nodes[0]
