import pytest
from unittest.mock import MagicMock

from services.condition_service import ConditionService
from models.flow_data import ConditionConfiguration, FlowNodeCondition


@pytest.fixture
def service():
    return ConditionService(log_util=MagicMock())


def _condition(variable, operator, value=None):
    return FlowNodeCondition(variable=variable, operator=operator, value=value)


class TestOperators:

    @pytest.mark.parametrize("actual, expected, result", [
        ("Pizza", "pizza", True),
        (25, "25", True),
        ("25.0", 25, True),
        ("burger", "pizza", False),
        (None, None, True),
        (None, "x", False),
        (True, "true", True),
    ])
    def test_equals(self, service, actual, expected, result):
        """Numbers compare numerically, everything else as case-insensitive text"""
        assert service.evaluate_condition(_condition("v", "equals", expected), {"v": actual}) is result

    def test_not_equals(self, service):
        assert service.evaluate_condition(_condition("v", "not_equals", "a"), {"v": "b"}) is True
        assert service.evaluate_condition(_condition("v", "not_equals", "A"), {"v": "a"}) is False

    @pytest.mark.parametrize("operator, actual, expected, result", [
        ("greater_than", 25, 18, True),
        ("greater_than", "16", 18, False),
        ("greater_than", 18, 18, False),
        ("less_than", "3.5", 4, True),
        ("less_than", "abc", 4, False),
        ("greater_than", None, 4, False),
        ("greater_than", True, 0, False),
    ])
    def test_numeric_comparisons(self, service, operator, actual, expected, result):
        """Non-numeric operands never satisfy an ordering"""
        assert service.evaluate_condition(_condition("v", operator, expected), {"v": actual}) is result

    @pytest.mark.parametrize("actual, expected, result", [
        ("I want PIZZA", "pizza", True),
        (["Pizza", "Soda"], "soda", True),
        (["Pizza"], "piz", False),
        ({"coupon": "X"}, "coupon", True),
        (None, "x", False),
    ])
    def test_contains(self, service, actual, expected, result):
        assert service.evaluate_condition(_condition("v", "contains", expected), {"v": actual}) is result

    def test_not_contains(self, service):
        assert service.evaluate_condition(_condition("v", "not_contains", "x"), {"v": "abc"}) is True

    @pytest.mark.parametrize("variables, result", [
        ({"v": "value"}, True),
        ({"v": 0}, True),
        ({"v": ""}, False),
        ({"v": None}, False),
        ({}, False),
    ])
    def test_exists(self, service, variables, result):
        assert service.evaluate_condition(_condition("v", "exists"), variables) is result


class TestLogicalOperators:

    def test_and_requires_all(self, service):
        config = ConditionConfiguration(conditions=[
            _condition("age", "greater_than", 18),
            _condition("city", "equals", "Pune"),
        ])
        assert service.evaluate(config, {"age": 30, "city": "pune"}) is True
        assert service.evaluate(config, {"age": 30, "city": "Delhi"}) is False

    def test_or_requires_any(self, service):
        config = ConditionConfiguration(
            conditions=[_condition("age", "greater_than", 18), _condition("vip", "equals", True)],
            logicalOperator="or"
        )
        assert service.evaluate(config, {"age": 10, "vip": True}) is True
        assert service.evaluate(config, {"age": 10, "vip": False}) is False

    def test_empty_conditions_are_false(self, service):
        assert service.evaluate(ConditionConfiguration(conditions=[]), {}) is False
