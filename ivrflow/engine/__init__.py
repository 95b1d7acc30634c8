"""Workflow execution: conditions, node handlers and the interpreter."""

from .conditions import evaluate_condition, loosely_equal
from .handlers import HandlerContext, NodeHandlers, Transition
from .interpreter import WorkflowInterpreter
from .variables import substitute, substitute_all

__all__ = [
    "evaluate_condition",
    "loosely_equal",
    "HandlerContext",
    "NodeHandlers",
    "Transition",
    "WorkflowInterpreter",
    "substitute",
    "substitute_all",
]
