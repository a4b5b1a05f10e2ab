"""
Variable Context Helpers.

Lookup of dotted variable paths and {{variable}} substitution.
"""

import re
from typing import Any, Dict, List

_MISSING = object()

VARIABLE_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")


def lookup_variable(variables: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Look up a variable by dotted path.

    Nested dicts are navigated by key and lists by integer index;
    anything unresolved yields ``default``.
    """
    value = resolve_path(variables, path.split("."))
    return default if value is _MISSING else value


def has_variable(variables: Dict[str, Any], path: str) -> bool:
    """Check whether a dotted path resolves in the context."""
    return resolve_path(variables, path.split(".")) is not _MISSING


def resolve_path(variables: Dict[str, Any], path: List[str]) -> Any:
    if not path or path[0] not in variables:
        return _MISSING

    value = variables[path[0]]
    for key in path[1:]:
        if isinstance(value, dict) and key in value:
            value = value[key]
        elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return _MISSING

    return value


def substitute_string(text: str, variables: Dict[str, Any]) -> str:
    """Substitute {{variable}} placeholders; unknown ones are left as-is."""

    def replacer(match):
        value = lookup_variable(variables, match.group(1))
        if value is not None:
            return str(value)
        return match.group(0)

    return VARIABLE_PATTERN.sub(replacer, text)


def substitute_variables(data: Any, variables: Dict[str, Any]) -> Any:
    """Substitute placeholders recursively in strings, dicts and lists."""
    if isinstance(data, str):
        return substitute_string(data, variables)
    elif isinstance(data, dict):
        return {k: substitute_variables(v, variables) for k, v in data.items()}
    elif isinstance(data, list):
        return [substitute_variables(v, variables) for v in data]
    else:
        return data
