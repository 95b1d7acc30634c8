"""
Node data validation.

Checks required fields, value ranges and patterns for a node's data bag
against its registered definition. Pure; no side effects.
"""

import re
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..config import ConditionOperator, NodeType
from ..models import NodeValidationResult, parse_node_payload
from .definitions import NodeDefinition, NodeProperty
from .registry import get_node_registry


_PATTERN_MESSAGES = {
    "phone": "must be a valid phone number in E.164 format",
    "url": "must be a valid URL",
}


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def _lookup(prop: NodeProperty, data: Dict[str, Any]) -> Any:
    for key in prop.keys():
        value = data.get(key)
        if _is_present(value):
            return value
    return None


def _is_required(prop: NodeProperty, node_def: NodeDefinition, data: Dict[str, Any]) -> bool:
    if any(_is_present(data.get(key)) for key in prop.satisfied_by):
        return False
    if prop.required:
        return True
    if not prop.required_when:
        return False

    for key, expected in prop.required_when.items():
        actual = data.get(key)
        if actual is None:
            other = next((p for p in node_def.properties if p.name == key), None)
            actual = other.default_value if other else None
        if actual != expected:
            return False
    return True


def _check_value(prop: NodeProperty, value: Any) -> Optional[str]:
    """Return an error message for ``value`` or None when it is acceptable."""
    if prop.kind == "number":
        if isinstance(value, bool):
            return f"{prop.name} must be a number"
        try:
            number = float(value)
        except (TypeError, ValueError):
            return f"{prop.name} must be a number"
        if prop.minimum is not None and number < prop.minimum:
            return f"{prop.name} must be at least {prop.minimum:g}"
        if prop.maximum is not None and number > prop.maximum:
            return f"{prop.name} must be at most {prop.maximum:g}"
        return None

    if prop.kind == "boolean":
        if isinstance(value, bool) or str(value).lower() in ("true", "false"):
            return None
        return f"{prop.name} must be true or false"

    if prop.kind == "select":
        if prop.options and str(value) not in prop.options:
            return f"{prop.name} must be one of: {', '.join(prop.options)}"
        return None

    if prop.kind == "object" or not isinstance(value, str):
        return None

    if prop.min_length is not None and len(value.strip()) < prop.min_length:
        return f"{prop.name} must be at least {prop.min_length} characters"
    if prop.max_length is not None and len(value) > prop.max_length:
        return f"{prop.name} must be at most {prop.max_length} characters"
    if prop.pattern and not re.match(prop.pattern, value):
        return f"{prop.name} {_PATTERN_MESSAGES.get(prop.kind, 'has an invalid format')}"
    return None


def _type_warnings(node_type: NodeType, data: Dict[str, Any]) -> List[str]:
    warnings = []

    if node_type == NodeType.INPUT:
        has_prompt = any(_is_present(data.get(k)) for k in ("prompt", "message", "messageText", "text"))
        if not has_prompt and not _is_present(data.get("audioUrl")):
            warnings.append("input has no prompt; the caller will hear silence before the gather")

    elif node_type == NodeType.CONDITIONAL:
        operator = data.get("operator", ConditionOperator.EQUALS.value)
        if operator != ConditionOperator.EXISTS.value and data.get("value") is None:
            warnings.append("conditional has no comparison value")

    elif node_type == NodeType.REPEAT:
        if not _is_present(data.get("fallbackNodeId") or data.get("fallback_node_id")):
            warnings.append("repeat has no fallbackNodeId; the fallback handle is used once repeats run out")

    elif node_type == NodeType.END:
        if not any(_is_present(data.get(k)) for k in ("text", "message", "messageText")):
            warnings.append("end node has no goodbye message")

    return warnings


def validate_node(
    node_type: Union[NodeType, str],
    data: Optional[Dict[str, Any]],
) -> NodeValidationResult:
    """
    Validate a node's data bag.

    Args:
        node_type: Node type (enum or its string value)
        data: Raw node data

    Returns:
        NodeValidationResult with errors and warnings
    """
    data = data or {}
    try:
        node_type = NodeType(node_type)
    except ValueError:
        return NodeValidationResult(is_valid=False, errors=[f"Unknown node type: {node_type}"])

    node_def = get_node_registry().get(node_type)
    errors: List[str] = []

    for prop in node_def.properties:
        value = _lookup(prop, data)
        if value is None:
            if _is_required(prop, node_def, data):
                errors.append(f"{prop.name} is required")
            continue

        error = _check_value(prop, value)
        if error:
            errors.append(error)

    if not errors:
        try:
            parse_node_payload(node_type, data)
        except ValidationError as e:
            for item in e.errors():
                location = ".".join(str(part) for part in item["loc"])
                errors.append(f"{location}: {item['msg']}")

    return NodeValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=_type_warnings(node_type, data),
    )
