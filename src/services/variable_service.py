"""
Variable Service
Reads values collected by input nodes, substitutes {{name}} placeholders
and evaluates condition node specs against them.
"""
from typing import Dict, Optional, TYPE_CHECKING
import re

from utils.log_utils import LogUtil
from models.flow_data import ConditionSpec

if TYPE_CHECKING:
    from database.flow_db import FlowDB

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

CONDITION_OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "greater_than",
    "less_than",
    "is_empty",
    "is_not_empty",
)


def interpolate_text(text: str, variables: Dict[str, str]) -> str:
    """
    Replace every {{name}} with its collected value.
    Placeholders without a (non-empty) value are left as written.
    """
    if not text or "{{" not in text:
        return text

    def _replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return value if value else match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def _to_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def evaluate_operator(operator: Optional[str], actual: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare a collected value with the authored value.
    String operators ignore case, numeric operators are false when either side is not a number,
    unknown operators are false.
    """
    actual_lower = (actual or "").lower()
    expected_lower = (expected or "").lower()

    if operator == "equals":
        return actual_lower == expected_lower
    if operator == "not_equals":
        return actual_lower != expected_lower
    if operator == "contains":
        return expected_lower in actual_lower
    if operator == "not_contains":
        return expected_lower not in actual_lower
    if operator == "starts_with":
        return actual_lower.startswith(expected_lower)
    if operator == "ends_with":
        return actual_lower.endswith(expected_lower)
    if operator in ("greater_than", "less_than"):
        left = _to_float(actual)
        right = _to_float(expected)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right
    if operator == "is_empty":
        return actual is None or actual.strip() == ""
    if operator == "is_not_empty":
        return actual is not None and actual.strip() != ""
    return False


class VariableService:
    """
    Per-execution variable lookups backed by the flow_user_inputs collection
    """

    def __init__(self, log_util: LogUtil, flow_db: "FlowDB"):
        self.log_util = log_util
        self.flow_db = flow_db

    async def get_variables(self, execution_id: str) -> Dict[str, str]:
        """
        Latest value per variable name for an execution
        """
        inputs = await self.flow_db.get_flow_user_inputs(execution_id)
        variables: Dict[str, str] = {}
        for user_input in inputs:
            variables[user_input.variable_name] = user_input.user_response
        return variables

    async def interpolate(self, text: Optional[str], execution_id: str) -> Optional[str]:
        if not text or "{{" not in text:
            return text
        variables = await self.get_variables(execution_id)
        result = interpolate_text(text, variables)
        if result != text:
            self.log_util.debug(
                service_name="VariableService",
                message=f"[INTERPOLATE] '{text}' -> '{result}' for execution {execution_id}"
            )
        return result

    async def evaluate_condition(self, condition: Optional[ConditionSpec], execution_id: str) -> bool:
        """
        Evaluate a condition node's {field, operator, value} against the execution's collected variables.

        Args:
            condition: {field, operator, value} authored on the node
            execution_id: Execution whose variables are read

        Returns:
            True or False, never raises for malformed specs
        """
        if condition is None or not condition.field or not condition.operator:
            self.log_util.warning(
                service_name="VariableService",
                message=f"[CONDITION] Incomplete condition on execution {execution_id}, evaluating to false"
            )
            return False

        if condition.operator not in CONDITION_OPERATORS:
            self.log_util.warning(
                service_name="VariableService",
                message=f"[CONDITION] Unknown operator '{condition.operator}', evaluating to false"
            )
            return False

        variables = await self.get_variables(execution_id)
        actual = variables.get(condition.field)
        result = evaluate_operator(condition.operator, actual, condition.value)

        self.log_util.info(
            service_name="VariableService",
            message=f"[CONDITION] '{actual}' {condition.operator} '{condition.value}' -> {result}"
        )
        return result
