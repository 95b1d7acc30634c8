"""Workflow and execution persistence."""

from .base import ExecutionRepository, WorkflowRepository
from .memory import InMemoryExecutionRepository, InMemoryWorkflowRepository

__all__ = [
    "ExecutionRepository",
    "WorkflowRepository",
    "InMemoryExecutionRepository",
    "InMemoryWorkflowRepository",
]
