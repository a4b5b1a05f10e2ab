"""
Flow Preview Module.

Client-side dry run of flows with mocked integrations.
"""

from .conditions import ConditionEvaluator, ParsedCondition, parse_condition
from .handlers import DEFAULT_HANDLERS, PreviewContext, validate_answer
from .simulator import FlowSimulator, order_transitions
from .variables import lookup_variable, substitute_variables

__all__ = [
    "ConditionEvaluator",
    "ParsedCondition",
    "parse_condition",
    "DEFAULT_HANDLERS",
    "PreviewContext",
    "validate_answer",
    "FlowSimulator",
    "order_transitions",
    "lookup_variable",
    "substitute_variables",
]
