from __future__ import annotations

import asyncio
import copy
import dataclasses

import pytest

from nodeflow.service.context import build_execution_context
from nodeflow.service.models import WorkflowNode


@pytest.fixture
def node():
    return WorkflowNode(
        id="node-1",
        type="httpRequest",
        name="Fetch",
        workflow_id="wf-1",
        configuration={"url": "https://example.com", "headers": {"a": "1"}},
    )


def test_overrides_win_over_configuration(node):
    ctx = build_execution_context(node, {"parameters": {"url": "https://other.test"}})

    assert ctx.parameters == {"url": "https://other.test", "headers": {"a": "1"}}
    assert ctx.node_id == "node-1"
    assert ctx.workflow_id == "wf-1"


def test_absent_collections_default_to_empty(node):
    ctx = build_execution_context(node)

    assert ctx.input_data == []
    assert ctx.previous_node_outputs == {}
    assert ctx.workflow_variables == {}
    assert ctx.metadata == {}
    assert ctx.credentials is None
    assert ctx.retry_count == 0
    assert ctx.is_retry is False
    assert ctx.cancel_event is None


def test_configuration_never_mutated(node):
    original = node.configuration
    snapshot = copy.deepcopy(original)

    first = build_execution_context(node, {"parameters": {"url": "https://a.test"}})
    second = build_execution_context(node, {"parameters": {"headers": {"b": "2"}}})
    first.parameters["headers"]["a"] = "changed"
    second.parameters["extra"] = True

    assert node.configuration is original
    assert original == snapshot
    assert first.parameters["url"] == "https://a.test"
    assert second.parameters["headers"] == {"b": "2"}


def test_run_data_is_copied(node):
    items = [{"id": 1, "tags": ["a"]}]
    outputs = {"prev": [{"ok": True}]}
    variables = {"env": {"name": "prod"}}

    ctx = build_execution_context(
        node,
        {"input_data": items, "previous_node_outputs": outputs, "workflow_variables": variables},
    )
    ctx.input_data[0]["tags"].append("b")
    ctx.previous_node_outputs["prev"][0]["ok"] = False
    ctx.workflow_variables["env"]["name"] = "dev"

    assert items == [{"id": 1, "tags": ["a"]}]
    assert outputs == {"prev": [{"ok": True}]}
    assert variables == {"env": {"name": "prod"}}


def test_context_is_frozen(node):
    ctx = build_execution_context(node)
    with pytest.raises(dataclasses.FrozenInstanceError):
        ctx.node_id = "other"


def test_derive_returns_new_context(node):
    ctx = build_execution_context(node)
    retried = ctx.derive(retry_count=1, is_retry=True)

    assert retried.retry_count == 1
    assert retried.is_retry is True
    assert ctx.retry_count == 0


def test_accepts_mapping_nodes():
    ctx = build_execution_context(
        {"id": "n", "type": "delay", "workflowId": "wf", "configuration": {"duration": 1}},
        {"execution_id": "exec-1", "input_data": [{"x": 1}]},
    )

    assert ctx.node.type == "delay"
    assert ctx.workflow_id == "wf"
    assert ctx.execution_id == "exec-1"
    assert ctx.first_input == {"x": 1}


def test_partial_workflow_id_takes_precedence(node):
    ctx = build_execution_context(node, {"workflow_id": "wf-override"})
    assert ctx.workflow_id == "wf-override"


def test_unknown_partial_keys_rejected(node):
    with pytest.raises(ValueError, match="inputData"):
        build_execution_context(node, {"inputData": []})


def test_node_without_type_rejected():
    with pytest.raises(ValueError):
        build_execution_context({"id": "x"})


def test_cancel_event_passed_through(node):
    event = asyncio.Event()
    ctx = build_execution_context(node, {"cancel_event": event})

    assert ctx.cancel_event is event
    assert not ctx.cancelled
    event.set()
    assert ctx.cancelled
