from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from nodeflow.executors.base import NodeExecutor
from nodeflow.logging import get_logger
from nodeflow.service.models import (
    DisplayOptions,
    ExecutionContext,
    ExecutionResult,
    NodeOption,
    NodeProperty,
    NodeSchema,
    ResourceHints,
)

logger = get_logger(__name__)

TRIGGER_TYPES = ("manual", "webhook", "schedule", "email")


class TriggerExecutor(NodeExecutor):
    """Start point of a workflow; seeds the run with initial data."""

    def get_schema(self) -> NodeSchema:
        return NodeSchema(
            name="trigger",
            display_name="Trigger",
            description="Start point for workflow execution",
            group=("core", "triggers"),
            icon="fas:play",
            color="#4CAF50",
            inputs=(),
            outputs=("main",),
            properties=(
                NodeProperty(
                    name="triggerType",
                    display_name="Trigger Type",
                    type="options",
                    required=True,
                    default="manual",
                    options=(
                        NodeOption("Manual", "manual"),
                        NodeOption("Webhook", "webhook"),
                        NodeOption("Schedule", "schedule"),
                        NodeOption("Email", "email"),
                    ),
                ),
                NodeProperty(
                    name="webhookPath",
                    display_name="Webhook Path",
                    type="string",
                    placeholder="/webhook/my-workflow",
                    description="Custom webhook path (optional)",
                    display_options=DisplayOptions(show={"triggerType": ["webhook"]}),
                ),
                NodeProperty(
                    name="cronExpression",
                    display_name="Cron Expression",
                    type="string",
                    required=True,
                    placeholder="0 9 * * 1-5",
                    description="Cron expression for scheduling",
                    display_options=DisplayOptions(show={"triggerType": ["schedule"]}),
                ),
                NodeProperty(
                    name="emailAddress",
                    display_name="Email Address",
                    type="string",
                    required=True,
                    placeholder="trigger@example.com",
                    description="Email address to monitor",
                    display_options=DisplayOptions(show={"triggerType": ["email"]}),
                ),
                NodeProperty(
                    name="initialData",
                    display_name="Initial Data",
                    type="json",
                    default={},
                    description="Initial data to pass to the workflow",
                ),
            ),
            resources=ResourceHints(memory_mb=16, timeout_seconds=5),
        )

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        trigger_type = context.parameters.get("triggerType") or "manual"
        initial = self._initial_data(context)
        if initial is None:
            return self.error_result("Initial Data must be a JSON object")

        now = datetime.now(timezone.utc).isoformat()
        output: Dict[str, Any] = {
            **initial,
            **self.input_record(context),
            "_trigger": {
                "type": trigger_type,
                "executionId": context.execution_id,
                "workflowId": context.workflow_id,
                "timestamp": now,
            },
        }
        logger.info("trigger_fired", trigger_type=trigger_type, node_id=context.node_id)
        return self.success_result(
            output, {"triggerType": trigger_type, "triggeredAt": now}
        )

    def _initial_data(self, context: ExecutionContext) -> Dict[str, Any] | None:
        raw = context.parameters.get("initialData") or {}
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                return None
        if not isinstance(raw, Mapping):
            return None
        return dict(self.process_value(raw, context))
