"""
Condition evaluation for conditional nodes.

Comparisons are loose: numbers compare numerically when both sides
coerce, everything else compares as text.
"""

import re
from typing import Any, Dict, Optional

import structlog

from ..config import ConditionOperator
from .variables import lookup_variable

logger = structlog.get_logger(__name__)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def loosely_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None

    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        a, b = _to_number(left), _to_number(right)
        if a is not None and b is not None:
            return a == b

    return str(left) == str(right)


def evaluate_condition(
    variables: Dict[str, Any],
    variable: str,
    operator: ConditionOperator,
    value: Any = None,
) -> bool:
    """
    Evaluate ``variables[variable] <operator> value``.

    Args:
        variables: Execution variable bag
        variable: Variable name, dotted paths allowed
        operator: Comparison operator
        value: Right-hand side

    Returns:
        Result of the comparison; unevaluable comparisons are False
    """
    actual = lookup_variable(variables, variable.split(".")) if variable else None

    if operator == ConditionOperator.EQUALS:
        return loosely_equal(actual, value)
    elif operator == ConditionOperator.NOT_EQUALS:
        return not loosely_equal(actual, value)
    elif operator == ConditionOperator.CONTAINS:
        return actual is not None and value is not None and str(value) in str(actual)
    elif operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        a, b = _to_number(actual), _to_number(value)
        if a is None or b is None:
            return False
        return a > b if operator == ConditionOperator.GREATER_THAN else a < b
    elif operator == ConditionOperator.EXISTS:
        return actual is not None
    elif operator == ConditionOperator.REGEX:
        if actual is None or value is None:
            return False
        try:
            return re.search(str(value), str(actual)) is not None
        except re.error as e:
            logger.warning("invalid_condition_pattern", pattern=str(value), error=str(e))
            return False

    return False
