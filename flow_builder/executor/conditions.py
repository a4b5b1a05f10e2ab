"""
Transition Condition Evaluation.

Conditions are single comparisons of a variable against a literal:

    age > 18
    status == 'active'
    answer.email contains "@"
    name startsWith A

Nothing is ever passed to ``eval``; unsupported syntax raises
MalformedCondition.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..exceptions import MalformedCondition
from .variables import has_variable, lookup_variable

OPERATORS = ("==", "!=", ">", "<", ">=", "<=", "contains", "startsWith")

_VARIABLE = r"[A-Za-z_]\w*(?:\.\w+)*"
_WORD_CONDITION = re.compile(rf"^(?P<var>{_VARIABLE})\s+(?P<op>contains|startsWith)\s+(?P<value>.+)$")
_SYMBOL_CONDITION = re.compile(rf"^(?P<var>{_VARIABLE})\s*(?P<op>==|!=|>=|<=|>|<)\s*(?P<value>.+)$")
_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?$")
_BARE_WORD = re.compile(r"^[\w@.\-]+$")


@dataclass(frozen=True)
class ParsedCondition:
    """A condition split into its parts."""

    variable: str
    operator: str
    value: Any


def parse_literal(condition: str, raw: str) -> Any:
    """Parse the right-hand side of a condition."""
    raw = raw.strip()

    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
        inner = raw[1:-1]
        if raw[0] in inner:
            raise MalformedCondition(condition, "unbalanced quotes")
        return inner

    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None

    if _NUMBER.match(raw):
        return float(raw) if "." in raw else int(raw)

    if _BARE_WORD.match(raw):
        return raw

    raise MalformedCondition(condition, f"unsupported value {raw!r}")


def parse_condition(condition: Optional[str]) -> Optional[ParsedCondition]:
    """
    Parse a condition string.

    Returns:
        None for blank conditions (unconditional transitions)

    Raises:
        MalformedCondition: If the string is not a supported comparison
    """
    if condition is None or not condition.strip():
        return None

    text = condition.strip()
    match = _WORD_CONDITION.match(text) or _SYMBOL_CONDITION.match(text)
    if not match:
        raise MalformedCondition(condition, "expected '<variable> <operator> <value>'")

    return ParsedCondition(
        variable=match.group("var"),
        operator=match.group("op"),
        value=parse_literal(condition, match.group("value")),
    )


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMBER.match(value.strip()):
        return float(value.strip())
    return None


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _equals(actual: Any, expected: Any) -> bool:
    if expected is None:
        return actual is None
    if isinstance(expected, bool):
        return _to_bool(actual) is expected

    expected_number = _to_number(expected)
    actual_number = _to_number(actual)
    if isinstance(expected, (int, float)) and actual_number is not None:
        return actual_number == expected_number

    return str(actual) == str(expected)


def compare(actual: Any, operator: str, expected: Any) -> bool:
    """Apply a comparison operator."""
    if operator == "==":
        return _equals(actual, expected)
    if operator == "!=":
        return not _equals(actual, expected)

    if operator in (">", "<", ">=", "<="):
        left = _to_number(actual)
        right = _to_number(expected)
        if left is None or right is None:
            return False
        if operator == ">":
            return left > right
        if operator == "<":
            return left < right
        if operator == ">=":
            return left >= right
        return left <= right

    if actual is None:
        return False

    if operator == "contains":
        if isinstance(actual, (list, tuple, set)):
            return expected in actual or str(expected) in [str(a) for a in actual]
        if isinstance(actual, dict):
            return str(expected) in actual
        return str(expected) in str(actual)

    if operator == "startsWith":
        return str(actual).startswith(str(expected))

    raise ValueError(f"Unsupported operator: {operator}")


class ConditionEvaluator:
    """Evaluates transition conditions against a variable context."""

    def parse(self, condition: Optional[str]) -> Optional[ParsedCondition]:
        return parse_condition(condition)

    def is_valid(self, condition: Optional[str]) -> bool:
        try:
            parse_condition(condition)
            return True
        except MalformedCondition:
            return False

    def evaluate(self, condition: Optional[str], variables: Dict[str, Any]) -> bool:
        """
        Evaluate a condition.

        Blank conditions are always true; variables missing from the
        context make the comparison false.

        Raises:
            MalformedCondition: If the condition cannot be parsed
        """
        parsed = parse_condition(condition)
        if parsed is None:
            return True

        if not has_variable(variables, parsed.variable):
            return False

        return compare(lookup_variable(variables, parsed.variable), parsed.operator, parsed.value)
