"""Unit tests for transition conditions and variable helpers."""

import pytest

from flow_builder.exceptions import MalformedCondition
from flow_builder.executor.conditions import ConditionEvaluator, parse_condition
from flow_builder.executor.variables import lookup_variable, substitute_variables


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


class TestParseCondition:
    """Tests for condition parsing."""

    def test_blank_is_unconditional(self):
        assert parse_condition(None) is None
        assert parse_condition("   ") is None

    def test_symbol_operators(self):
        parsed = parse_condition("age >= 18")

        assert parsed.variable == "age"
        assert parsed.operator == ">="
        assert parsed.value == 18

    def test_literals(self):
        assert parse_condition("status == 'active'").value == "active"
        assert parse_condition('status == "on hold"').value == "on hold"
        assert parse_condition("score > 2.5").value == 2.5
        assert parse_condition("flag == true").value is True
        assert parse_condition("value == null").value is None
        assert parse_condition("plan == premium").value == "premium"

    def test_word_operators_and_dotted_paths(self):
        parsed = parse_condition("apiResponse.body.email contains @")

        assert parsed.variable == "apiResponse.body.email"
        assert parsed.operator == "contains"
        assert parsed.value == "@"

    @pytest.mark.parametrize(
        "condition",
        [
            "age >",
            "import os",
            "__import__('os').system('ls')",
            "age > 18 and name == 'x'",
            "name == 'unbalanced",
        ],
    )
    def test_malformed(self, condition):
        with pytest.raises(MalformedCondition):
            parse_condition(condition)


class TestConditionEvaluator:
    """Tests for ConditionEvaluator."""

    def test_blank_condition_is_true(self, evaluator):
        assert evaluator.evaluate("", {}) is True

    def test_numeric_comparisons(self, evaluator):
        assert evaluator.evaluate("age > 18", {"age": 21}) is True
        assert evaluator.evaluate("age > 18", {"age": "21"}) is True
        assert evaluator.evaluate("age <= 18", {"age": 21}) is False
        assert evaluator.evaluate("age == 21", {"age": "21"}) is True

    def test_ordering_needs_numbers(self, evaluator):
        assert evaluator.evaluate("name > 3", {"name": "Alice"}) is False

    def test_string_equality(self, evaluator):
        assert evaluator.evaluate("status == 'active'", {"status": "active"}) is True
        assert evaluator.evaluate("status != 'active'", {"status": "closed"}) is True

    def test_missing_variable_is_false(self, evaluator):
        assert evaluator.evaluate("age > 18", {}) is False
        assert evaluator.evaluate("status != 'x'", {}) is False

    def test_contains_and_starts_with(self, evaluator):
        variables = {"email": "alice@example.com", "tags": ["vip", "new"]}

        assert evaluator.evaluate("email contains '@example'", variables) is True
        assert evaluator.evaluate("tags contains vip", variables) is True
        assert evaluator.evaluate("email startsWith alice", variables) is True
        assert evaluator.evaluate("email startsWith bob", variables) is False

    def test_dotted_lookup(self, evaluator):
        variables = {"apiResponse": {"status": 200}}
        assert evaluator.evaluate("apiResponse.status == 200", variables) is True

    def test_boolean_equality(self, evaluator):
        assert evaluator.evaluate("verified == true", {"verified": True}) is True
        assert evaluator.evaluate("verified == true", {"verified": "false"}) is False

    def test_is_valid(self, evaluator):
        assert evaluator.is_valid("x == 1")
        assert not evaluator.is_valid("x ==")


class TestVariables:
    """Tests for variable lookup and substitution."""

    def test_lookup_paths(self):
        variables = {"user": {"name": "Ana", "phones": ["111", "222"]}}

        assert lookup_variable(variables, "user.name") == "Ana"
        assert lookup_variable(variables, "user.phones.1") == "222"
        assert lookup_variable(variables, "user.missing", default="?") == "?"

    def test_substitution(self):
        data = {"message": "Hi {{ user.name }}, ref {{ref}}", "items": ["{{unknown}}"]}
        result = substitute_variables(data, {"user": {"name": "Ana"}, "ref": 42})

        assert result["message"] == "Hi Ana, ref 42"
        assert result["items"] == ["{{unknown}}"]
