import pytest

from models.flow_data import ConditionSpec
from services.variable_service import interpolate_text, evaluate_operator


class TestInterpolateText:
    def test_substitutes_known_variables(self):
        assert interpolate_text("Hi {{name}}, you are {{age}}", {"name": "Sam", "age": "30"}) == "Hi Sam, you are 30"

    def test_unresolved_placeholder_left_verbatim(self):
        assert interpolate_text("Hi {{name}}", {}) == "Hi {{name}}"

    def test_empty_value_leaves_placeholder(self):
        assert interpolate_text("Hi {{name}}", {"name": ""}) == "Hi {{name}}"

    def test_repeated_placeholder_replaced_everywhere(self):
        assert interpolate_text("{{x}} and {{x}}", {"x": "1"}) == "1 and 1"

    def test_non_word_placeholder_untouched(self):
        assert interpolate_text("{{first name}}", {"first name": "Sam"}) == "{{first name}}"

    def test_idempotent_once_variables_exist(self):
        variables = {"name": "Sam", "city": "Oslo"}
        once = interpolate_text("{{name}} from {{city}}", variables)
        assert interpolate_text(once, variables) == once

    def test_text_without_placeholders_returned_as_is(self):
        assert interpolate_text("plain", {"name": "Sam"}) == "plain"


class TestEvaluateOperator:
    @pytest.mark.parametrize("operator, actual, expected", [
        ("equals", "YES", "yes"),
        ("contains", "Hello World", "WORLD"),
        ("starts_with", "Premium plan", "premium"),
        ("ends_with", "Premium PLAN", "plan"),
        ("not_equals", "yes", "no"),
        ("not_contains", "hello", "bye"),
    ])
    def test_string_operators_ignore_case(self, operator, actual, expected):
        assert evaluate_operator(operator, actual, expected) is True

    def test_numeric_operators(self):
        assert evaluate_operator("greater_than", "10", "9.5") is True
        assert evaluate_operator("less_than", "3", "2") is False

    @pytest.mark.parametrize("actual, expected", [("abc", "5"), ("5", "abc"), (None, "5"), ("", "1")])
    def test_numeric_operators_false_when_not_numbers(self, actual, expected):
        assert evaluate_operator("greater_than", actual, expected) is False
        assert evaluate_operator("less_than", actual, expected) is False

    @pytest.mark.parametrize("actual", [None, "", "   "])
    def test_is_empty(self, actual):
        assert evaluate_operator("is_empty", actual, None) is True
        assert evaluate_operator("is_not_empty", actual, None) is False

    def test_is_not_empty(self):
        assert evaluate_operator("is_not_empty", "x", None) is True

    def test_unknown_operator_is_false(self):
        assert evaluate_operator("matches_regex", "abc", "abc") is False


class TestVariableService:
    @pytest.mark.asyncio
    async def test_interpolate_reads_latest_value(self, engine, flow_db):
        await flow_db.save_flow_user_input("exec-9", "name", "Sam")
        await flow_db.save_flow_user_input("exec-9", "name", "Alex")

        assert await engine.variable_service.interpolate("Hi {{name}}", "exec-9") == "Hi Alex"

    @pytest.mark.asyncio
    async def test_interpolate_is_scoped_to_execution(self, engine, flow_db):
        await flow_db.save_flow_user_input("exec-1", "name", "Sam")

        assert await engine.variable_service.interpolate("Hi {{name}}", "exec-2") == "Hi {{name}}"

    @pytest.mark.asyncio
    async def test_condition_against_collected_value(self, engine, flow_db):
        await flow_db.save_flow_user_input("exec-1", "answer", "Yes please")
        condition = ConditionSpec(field="answer", operator="starts_with", value="YES")

        assert await engine.variable_service.evaluate_condition(condition, "exec-1") is True

    @pytest.mark.asyncio
    async def test_condition_missing_field_is_false(self, engine):
        condition = ConditionSpec(operator="is_empty")

        assert await engine.variable_service.evaluate_condition(condition, "exec-1") is False

    @pytest.mark.asyncio
    async def test_condition_uncollected_variable_is_empty(self, engine):
        condition = ConditionSpec(field="answer", operator="is_empty")

        assert await engine.variable_service.evaluate_condition(condition, "exec-1") is True

    @pytest.mark.asyncio
    async def test_condition_unknown_operator_is_false(self, engine, flow_db):
        await flow_db.save_flow_user_input("exec-1", "answer", "yes")
        condition = ConditionSpec(field="answer", operator="sounds_like", value="yes")

        assert await engine.variable_service.evaluate_condition(condition, "exec-1") is False

    @pytest.mark.asyncio
    async def test_condition_none_is_false(self, engine):
        assert await engine.variable_service.evaluate_condition(None, "exec-1") is False
