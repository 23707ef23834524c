from __future__ import annotations

import pytest

from nodeflow.executors.condition import OPERATORS, ConditionExecutor
from nodeflow.service.context import build_execution_context


def _context(conditions, combine="AND", input_item=None, **partial):
    node = {
        "id": "cond-1",
        "type": "condition",
        "configuration": {"conditions": conditions, "combineOperation": combine},
    }
    if input_item is not None:
        partial["input_data"] = [input_item]
    return build_execution_context(node, partial)


class TestOperators:
    @pytest.mark.parametrize(
        "operator,actual,expected,outcome",
        [
            ("equals", 5, "5", True),
            ("equals", "abc", "abc", True),
            ("equals", True, "true", True),
            ("notEquals", 5, "6", True),
            ("contains", "Hello World", "world", True),
            ("notContains", "Hello", "bye", True),
            ("startsWith", "prefix-rest", "PREFIX", True),
            ("endsWith", "file.csv", ".csv", True),
            ("greaterThan", "10", "9", True),
            ("greaterThan", "abc", "9", False),
            ("greaterThanOrEqual", 3, "3", True),
            ("lessThan", 2.5, "3", True),
            ("lessThanOrEqual", 4, "3", False),
            ("isEmpty", "  ", "", True),
            ("isEmpty", [], "", True),
            ("isNotEmpty", {"a": 1}, "", True),
            ("isNull", None, "", True),
            ("isNotNull", 0, "", True),
            ("regex", "order-123", r"\d+$", True),
            ("regex", "anything", "(unclosed", False),
            ("in", "b", "a, b, c", True),
            ("in", 2, "[1, 2, 3]", True),
            ("notIn", "z", "a,b", True),
            ("notIn", 2, "[1, 2]", False),
            ("in", 5, "5", False),
            ("notIn", 7, "5", False),
            ("in", "x", '{"x": 1}', False),
        ],
    )
    def test_operator(self, operator, actual, expected, outcome):
        assert OPERATORS[operator](actual, expected) is outcome


class TestConditionExecutor:
    @pytest.mark.asyncio
    async def test_routes_to_true_branch(self):
        ctx = _context(
            [{"field": "status", "operator": "equals", "value": "active"}],
            input_item={"status": "active"},
        )

        result = await ConditionExecutor().execute(ctx)

        assert result.success
        assert result.next_nodes == ["true"]
        assert result.fired_branches == ["true"]
        assert result.branch_items("false") == []
        output = result.data[0]
        assert output["conditionResult"] is True
        assert output["inputData"] == {"status": "active"}
        assert output["evaluatedConditions"][0]["result"] is True
        assert result.metadata["conditionsEvaluated"] == 1

    @pytest.mark.asyncio
    async def test_and_versus_or(self):
        conditions = [
            {"field": "age", "operator": "greaterThan", "value": "18"},
            {"field": "country", "operator": "equals", "value": "FR"},
        ]
        item = {"age": 30, "country": "DE"}

        and_result = await ConditionExecutor().execute(_context(conditions, "AND", item))
        or_result = await ConditionExecutor().execute(_context(conditions, "OR", item))

        assert and_result.next_nodes == ["false"]
        assert or_result.next_nodes == ["true"]

    @pytest.mark.asyncio
    async def test_nested_field_and_variable_value(self):
        ctx = _context(
            [{"field": "$input.user.role", "operator": "equals", "value": "{{$vars.role}}"}],
            input_item={"user": {"role": "admin"}},
            workflow_variables={"role": "admin"},
        )

        result = await ConditionExecutor().execute(ctx)

        assert result.data[0]["conditionResult"] is True

    @pytest.mark.asyncio
    async def test_previous_node_field(self):
        ctx = _context(
            [{"field": "$node.fetch.0.statusCode", "operator": "lessThan", "value": "400"}],
            previous_node_outputs={"fetch": [{"statusCode": 200}]},
        )

        result = await ConditionExecutor().execute(ctx)

        assert result.next_nodes == ["true"]

    @pytest.mark.asyncio
    async def test_conditions_as_json_string(self):
        ctx = _context(
            '[{"field": "n", "operator": "isNotNull"}]',
            input_item={"n": 1},
        )

        result = await ConditionExecutor().execute(ctx)

        assert result.data[0]["conditionResult"] is True

    @pytest.mark.asyncio
    async def test_empty_conditions_fail(self):
        result = await ConditionExecutor().execute(_context([]))

        assert not result.success
        assert result.error == "At least one condition is required"


class TestConditionValidation:
    def test_unknown_operator(self):
        result = ConditionExecutor().validate(
            {"conditions": [{"field": "a", "operator": "roughly"}]}
        )
        assert not result.is_valid
        assert result.errors == ["Condition 1 has unknown operator: roughly"]

    def test_non_object_condition(self):
        result = ConditionExecutor().validate({"conditions": ["a == b"]})
        assert result.errors == ["Condition 1 must be an object"]

    def test_missing_conditions(self):
        result = ConditionExecutor().validate({})
        assert result.errors == ["Conditions is required"]

    def test_bad_combine_operation(self):
        result = ConditionExecutor().validate(
            {"conditions": [{"field": "a"}], "combineOperation": "XOR"}
        )
        assert result.errors == ["Combine Operation must be one of: AND, OR"]

    def test_valid(self):
        result = ConditionExecutor().validate(
            {"conditions": [{"field": "a", "operator": "isEmpty"}], "combineOperation": "OR"}
        )
        assert result.is_valid
