"""
Condition Service
Evaluates condition node rules against the conversation variables.
"""
import math
from typing import Any, Dict, Optional

from utils.log_utils import LogUtil
from models.flow_data import ConditionConfiguration, FlowNodeCondition


class ConditionService:
    """
    Service for evaluating condition nodes.
    Operators: equals, not_equals, greater_than, less_than, contains, not_contains, exists
    """

    def __init__(self, log_util: LogUtil):
        self.log_util = log_util

    def evaluate(self, config: ConditionConfiguration, variables: Dict[str, Any]) -> bool:
        """
        Evaluate every condition and combine them with the logical operator (AND by default).
        """
        results = [self.evaluate_condition(condition, variables) for condition in (config.conditions or [])]
        if not results:
            return False
        if config.logicalOperator == "or":
            return any(results)
        return all(results)

    def evaluate_condition(self, condition: FlowNodeCondition, variables: Dict[str, Any]) -> bool:
        actual_value = variables.get(condition.variable)
        expected_value = condition.value
        operator = condition.operator

        if operator == "exists":
            condition_met = actual_value is not None and actual_value != ""
        elif operator == "equals":
            condition_met = _values_equal(actual_value, expected_value)
        elif operator == "not_equals":
            condition_met = not _values_equal(actual_value, expected_value)
        elif operator == "greater_than":
            actual_number, expected_number = _to_number(actual_value), _to_number(expected_value)
            condition_met = actual_number is not None and expected_number is not None and actual_number > expected_number
        elif operator == "less_than":
            actual_number, expected_number = _to_number(actual_value), _to_number(expected_value)
            condition_met = actual_number is not None and expected_number is not None and actual_number < expected_number
        elif operator == "contains":
            condition_met = _contains(actual_value, expected_value)
        elif operator == "not_contains":
            condition_met = not _contains(actual_value, expected_value)
        else:
            self.log_util.warning(
                service_name="ConditionService",
                message=f"[CONDITION] Unknown operator '{operator}', defaulting to False"
            )
            condition_met = False

        self.log_util.debug(
            service_name="ConditionService",
            message=f"[CONDITION] {condition.variable}={actual_value!r} {operator} {expected_value!r} -> {condition_met}"
        )
        return condition_met


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _values_equal(actual_value: Any, expected_value: Any) -> bool:
    if actual_value is None or expected_value is None:
        return actual_value is None and expected_value is None
    actual_number, expected_number = _to_number(actual_value), _to_number(expected_value)
    if actual_number is not None and expected_number is not None:
        return actual_number == expected_number
    return _as_text(actual_value).lower() == _as_text(expected_value).lower()


def _contains(actual_value: Any, expected_value: Any) -> bool:
    if actual_value is None or expected_value is None:
        return False
    if isinstance(actual_value, dict):
        return _as_text(expected_value) in actual_value
    if isinstance(actual_value, (list, tuple, set)):
        expected_text = _as_text(expected_value).lower()
        return any(_as_text(item).lower() == expected_text for item in actual_value)
    return _as_text(expected_value).lower() in _as_text(actual_value).lower()


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
