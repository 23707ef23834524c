from __future__ import annotations

import pytest
from jsonschema import Draft202012Validator

from nodeflow.service.models import (
    DisplayOptions,
    ExecutionResult,
    NodeOption,
    NodeProperty,
    NodeSchema,
    ResourceHints,
    ValidationResult,
    WorkflowNode,
)


class TestExecutionResult:
    def test_should_continue_defaults_to_success(self):
        assert ExecutionResult(success=True).should_continue is True
        assert ExecutionResult(success=False).should_continue is False

    def test_failure_gets_default_error(self):
        result = ExecutionResult(success=False)
        assert result.error == "Node execution failed"

    def test_success_clears_error(self):
        assert ExecutionResult(success=True, error="stale").error is None

    def test_single_item_wrapped(self):
        assert ExecutionResult(success=True, data={"a": 1}).data == [{"a": 1}]
        assert ExecutionResult(success=True, data=None).data == []

    def test_branch_items_folded_into_data(self):
        item = {"x": 1}
        result = ExecutionResult(success=True, outputs={"true": item, "false": []})

        assert result.data == [item]
        assert result.branch_items("true") == [item]
        assert result.fired_branches == ["true"]

    def test_should_advance(self):
        assert ExecutionResult.ok({}).should_advance
        assert not ExecutionResult.fail("x").should_advance
        assert not ExecutionResult(success=True, should_continue=False).should_advance
        assert ExecutionResult(success=False, should_continue=True).should_advance

    def test_ok_and_fail_helpers(self):
        ok = ExecutionResult.ok([{"a": 1}, {"a": 2}], metadata={"m": 1})
        assert ok.data == [{"a": 1}, {"a": 2}]
        assert ok.metadata == {"m": 1}

        failed = ExecutionResult.fail("bad", should_retry=True, retry_after=3)
        assert failed.error == "bad"
        assert failed.should_retry and failed.retry_after == 3
        assert failed.to_dict()["should_continue"] is False


class TestNodeProperty:
    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            NodeProperty("x", "X", "float")

    def test_options_coerced(self):
        prop = NodeProperty("m", "Mode", "options", options=[{"name": "A", "value": "a"}, "b"])
        assert prop.options == (NodeOption("A", "a"), NodeOption("b", "b"))
        assert prop.option_values() == ["a", "b"]

    def test_visibility(self):
        prop = NodeProperty(
            "cron",
            "Cron",
            "string",
            display_options=DisplayOptions(show={"kind": ["schedule"]}, hide={"legacy": [True]}),
        )
        assert prop.is_visible({"kind": "schedule"})
        assert not prop.is_visible({"kind": "manual"})
        assert not prop.is_visible({"kind": "schedule", "legacy": True})

    def test_value_schema_accepts_templates_for_typed_values(self):
        schema = NodeProperty("n", "N", "number").value_schema()
        assert schema["anyOf"][0] == {"type": "number"}
        assert NodeProperty("s", "S", "string").value_schema() == {"type": "string"}
        assert NodeProperty("j", "J", "json").value_schema() == {}

    @pytest.mark.parametrize("value", [5, 2.5, "5", " -0.25 ", "1e3", "{{$vars.n}}"])
    def test_number_accepts_numeric_strings(self, value):
        schema = NodeProperty("n", "N", "number").value_schema()
        assert Draft202012Validator(schema).is_valid(value)

    @pytest.mark.parametrize("value", ["abc", "5 apples", "", True, [1]])
    def test_number_rejects_non_numeric(self, value):
        schema = NodeProperty("n", "N", "number").value_schema()
        assert not Draft202012Validator(schema).is_valid(value)

    def test_boolean_accepts_boolean_strings(self):
        validator = Draft202012Validator(NodeProperty("b", "B", "boolean").value_schema())
        assert validator.is_valid(True)
        assert validator.is_valid("false")
        assert not validator.is_valid("maybe")

    def test_multiple_numbers_accept_strings(self):
        prop = NodeProperty("n", "N", "number", multiple_values=True)
        validator = Draft202012Validator(prop.value_schema())
        assert validator.is_valid([1, "2"])
        assert not validator.is_valid([1, "two"])


class TestNodeSchema:
    def test_sequences_become_tuples(self):
        schema = NodeSchema(name="n", display_name="N", description="", group=["a", "b"])
        assert schema.group == ("a", "b")

    def test_defaults_and_lookup(self):
        schema = NodeSchema(
            name="n",
            display_name="N",
            description="",
            properties=(
                NodeProperty("a", "A", "number", default=1),
                NodeProperty("b", "B", "string"),
            ),
        )
        assert schema.defaults() == {"a": 1}
        assert schema.get_property("b").display_name == "B"
        assert schema.get_property("zzz") is None

    def test_to_dict_uses_camel_case(self):
        schema = NodeSchema(
            name="n",
            display_name="N",
            description="d",
            properties=(NodeProperty("a", "A", "string", required=True),),
            resources=ResourceHints(memory_mb=8, timeout_seconds=5),
        )
        payload = schema.to_dict()
        assert payload["displayName"] == "N"
        assert payload["properties"][0]["displayName"] == "A"
        assert payload["resources"] == {"memoryMB": 8, "timeoutSeconds": 5}


class TestWorkflowNode:
    def test_coerce_camel_case_mapping(self):
        node = WorkflowNode.coerce(
            {"id": "1", "type": "delay", "isEnabled": False, "executionOrder": "3"}
        )
        assert node.is_enabled is False
        assert node.execution_order == 3
        assert node.label == "1"

    def test_coerce_rejects_other_types(self):
        with pytest.raises(TypeError):
            WorkflowNode.coerce(["not", "a", "node"])


def test_validation_result_from_errors():
    assert ValidationResult.from_errors([]).is_valid
    result = ValidationResult.from_errors(["a"], ["w"])
    assert not result.is_valid and result.warnings == ["w"]
