"""Per-call execution state."""

from .store import LIMIT_MESSAGES, ExecutionStore

__all__ = ["ExecutionStore", "LIMIT_MESSAGES"]
