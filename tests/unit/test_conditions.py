"""Unit tests for condition evaluation and variable substitution."""

import pytest

from ivrflow.config import ConditionOperator
from ivrflow.engine import evaluate_condition, loosely_equal, substitute, substitute_all


class TestEvaluateCondition:
    """Tests for conditional node operators."""

    @pytest.mark.parametrize(
        "operator,value,variables,expected",
        [
            (ConditionOperator.EQUALS, "vip", {"tier": "vip"}, True),
            (ConditionOperator.EQUALS, "vip", {"tier": "basic"}, False),
            (ConditionOperator.NOT_EQUALS, "vip", {"tier": "basic"}, True),
            (ConditionOperator.NOT_EQUALS, "vip", {"tier": "vip"}, False),
            (ConditionOperator.CONTAINS, "ip", {"tier": "vip"}, True),
            (ConditionOperator.CONTAINS, "gold", {"tier": "vip"}, False),
            (ConditionOperator.GREATER_THAN, "10", {"tier": 12}, True),
            (ConditionOperator.GREATER_THAN, "10", {"tier": "9"}, False),
            (ConditionOperator.LESS_THAN, 10, {"tier": "9.5"}, True),
            (ConditionOperator.LESS_THAN, 10, {"tier": 10}, False),
            (ConditionOperator.EXISTS, None, {"tier": "vip"}, True),
            (ConditionOperator.EXISTS, None, {}, False),
            (ConditionOperator.REGEX, r"^v.p$", {"tier": "vip"}, True),
            (ConditionOperator.REGEX, r"^gold", {"tier": "vip"}, False),
        ],
    )
    def test_operators(self, operator, value, variables, expected):
        assert evaluate_condition(variables, "tier", operator, value) is expected

    def test_numeric_comparison_with_non_numbers_is_false(self):
        variables = {"balance": "unknown"}

        assert evaluate_condition(variables, "balance", ConditionOperator.GREATER_THAN, 5) is False
        assert evaluate_condition(variables, "balance", ConditionOperator.LESS_THAN, 5) is False

    def test_invalid_regex_is_false(self):
        assert evaluate_condition({"tier": "vip"}, "tier", ConditionOperator.REGEX, "([") is False

    def test_dotted_variable_path(self):
        variables = {"customer": {"account": {"tier": "vip"}}}

        assert evaluate_condition(variables, "customer.account.tier", ConditionOperator.EQUALS, "vip") is True

    def test_missing_variable_equals_nothing(self):
        assert evaluate_condition({}, "tier", ConditionOperator.EQUALS, "vip") is False
        assert evaluate_condition({}, "tier", ConditionOperator.NOT_EQUALS, "vip") is True


class TestLooseEquality:
    """Tests for loosely_equal."""

    @pytest.mark.parametrize(
        "left,right,expected",
        [
            (1, "1", True),
            ("1.0", 1, True),
            ("1", "1.0", False),
            ("abc", "abc", True),
            (None, None, True),
            (None, "", False),
            (True, 1, True),
        ],
    )
    def test_loosely_equal(self, left, right, expected):
        assert loosely_equal(left, right) is expected


class TestSubstitution:
    """Tests for placeholder substitution."""

    def test_both_placeholder_styles(self):
        variables = {"name": "Ada", "account": {"id": 42}}

        assert substitute("Hello {{name}}", variables) == "Hello Ada"
        assert substitute("Account ${account.id}", variables) == "Account 42"

    def test_unknown_placeholder_is_kept(self):
        assert substitute("Hello {{name}}", {}) == "Hello {{name}}"

    def test_empty_text(self):
        assert substitute(None, {"a": 1}) is None
        assert substitute("", {"a": 1}) == ""

    def test_substitute_all_nested(self):
        data = {"to": "{{caller}}", "items": ["{{a}}", 3], "n": 1}

        assert substitute_all(data, {"caller": "+15550001111", "a": "x"}) == {
            "to": "+15550001111",
            "items": ["x", 3],
            "n": 1,
        }
