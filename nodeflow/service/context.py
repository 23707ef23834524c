from __future__ import annotations

import copy
from typing import Any, Mapping, Optional

from nodeflow.service.models import (
    PARTIAL_CONTEXT_KEYS,
    ExecutionContext,
    WorkflowNode,
)


def build_execution_context(
    node: WorkflowNode | Mapping[str, Any],
    partial: Optional[Mapping[str, Any]] = None,
) -> ExecutionContext:
    """Merge a node definition with per-run overrides into a fresh context.

    Parameter overrides win over the node's static configuration. Absent
    collections become empty so executors never need to check for ``None``.
    The node's configuration, input items, previous outputs and workflow
    variables are deep-copied, so an executor cannot alter data owned by
    the caller or by an earlier node's result.

    Raises:
        ValueError: ``partial`` contains keys that are not context fields
    """
    node = WorkflowNode.coerce(node)
    partial = partial or {}
    unknown = set(partial) - PARTIAL_CONTEXT_KEYS
    if unknown:
        raise ValueError(
            f"Unknown execution context field(s): {', '.join(sorted(unknown))}"
        )

    parameters = copy.deepcopy(dict(node.configuration or {}))
    parameters.update(copy.deepcopy(dict(partial.get("parameters") or {})))

    credentials = partial.get("credentials")

    return ExecutionContext(
        node_id=node.id,
        workflow_id=partial.get("workflow_id") or node.workflow_id or "",
        execution_id=partial.get("execution_id") or "",
        organization_id=partial.get("organization_id") or "",
        user_id=partial.get("user_id") or "",
        node=node,
        input_data=copy.deepcopy(list(partial.get("input_data") or [])),
        parameters=parameters,
        credentials=dict(credentials) if credentials is not None else None,
        previous_node_outputs=copy.deepcopy(dict(partial.get("previous_node_outputs") or {})),
        workflow_variables=copy.deepcopy(dict(partial.get("workflow_variables") or {})),
        metadata=dict(partial.get("metadata") or {}),
        retry_count=int(partial.get("retry_count") or 0),
        is_retry=bool(partial.get("is_retry", False)),
        cancel_event=partial.get("cancel_event"),
    )
