"""Variable substitution in node text."""

import re
from typing import Any, Dict, List, Optional

_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}|\$\{\s*(\w+(?:\.\w+)*)\s*\}")


def lookup_variable(variables: Dict[str, Any], path: List[str]) -> Any:
    """Look up a dotted path in the variable bag."""
    if not path:
        return None

    value: Any = variables.get(path[0])
    for part in path[1:]:
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def substitute(text: Optional[str], variables: Dict[str, Any]) -> Optional[str]:
    """
    Replace ``{{name}}`` and ``${name}`` placeholders.

    Unknown variables are left as written.
    """
    if not text:
        return text

    def replacer(match: "re.Match") -> str:
        path = (match.group(1) or match.group(2)).split(".")
        value = lookup_variable(variables, path)
        if value is not None:
            return str(value)
        return match.group(0)

    return _PATTERN.sub(replacer, text)


def substitute_all(data: Any, variables: Dict[str, Any]) -> Any:
    """Substitute placeholders in every string of a nested structure."""
    if isinstance(data, str):
        return substitute(data, variables)
    elif isinstance(data, dict):
        return {k: substitute_all(v, variables) for k, v in data.items()}
    elif isinstance(data, list):
        return [substitute_all(v, variables) for v in data]
    return data
