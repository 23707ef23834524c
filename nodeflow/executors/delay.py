from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from nodeflow.config import Settings, get_settings
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
    ValidationResult,
)

logger = get_logger(__name__)

UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 24 * 60 * 60,
}


def _number(value: Any) -> Optional[float]:
    """Numeric value of a literal parameter; None for templates and junk."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def parse_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DelayExecutor(NodeExecutor):
    """Pause the workflow for a fixed, random or until-time duration.

    Input items pass through with a ``_delay`` block attached. The wait ends
    early, as a failed result, when the context's cancel event is set.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def get_schema(self) -> NodeSchema:
        return NodeSchema(
            name="delay",
            display_name="Delay",
            description="Add a delay/wait in workflow execution",
            group=("core", "flow"),
            icon="fas:clock",
            color="#9C27B0",
            properties=(
                NodeProperty(
                    name="delayType",
                    display_name="Delay Type",
                    type="options",
                    required=True,
                    default="fixed",
                    options=(
                        NodeOption("Fixed Duration", "fixed"),
                        NodeOption("Until Specific Time", "until"),
                        NodeOption("Random Duration", "random"),
                    ),
                ),
                NodeProperty(
                    name="duration",
                    display_name="Duration",
                    type="number",
                    required=True,
                    default=5,
                    description="Duration in the selected unit",
                    display_options=DisplayOptions(show={"delayType": ["fixed"]}),
                ),
                NodeProperty(
                    name="unit",
                    display_name="Time Unit",
                    type="options",
                    default="seconds",
                    options=tuple(NodeOption(u.capitalize(), u) for u in UNIT_SECONDS),
                    display_options=DisplayOptions(show={"delayType": ["fixed"]}),
                ),
                NodeProperty(
                    name="untilTime",
                    display_name="Until Time",
                    type="dateTime",
                    required=True,
                    description="Wait until this specific date/time",
                    display_options=DisplayOptions(show={"delayType": ["until"]}),
                ),
                NodeProperty(
                    name="minDuration",
                    display_name="Minimum Duration",
                    type="number",
                    required=True,
                    default=1,
                    description="Minimum duration in seconds",
                    display_options=DisplayOptions(show={"delayType": ["random"]}),
                ),
                NodeProperty(
                    name="maxDuration",
                    display_name="Maximum Duration",
                    type="number",
                    required=True,
                    default=10,
                    description="Maximum duration in seconds",
                    display_options=DisplayOptions(show={"delayType": ["random"]}),
                ),
            ),
            resources=ResourceHints(memory_mb=8, timeout_seconds=86400),
        )

    def validate(self, parameters: Mapping[str, Any]) -> ValidationResult:
        result = super().validate(parameters)
        delay_type = parameters.get("delayType")
        if delay_type == "fixed":
            duration = _number(parameters.get("duration"))
            if duration is not None and duration < 0:
                result.errors.append("Duration must not be negative")
        elif delay_type == "random":
            low = _number(parameters.get("minDuration"))
            high = _number(parameters.get("maxDuration"))
            numeric = low is not None and high is not None
            if numeric and low < 0:
                result.errors.append("Minimum Duration must not be negative")
            if numeric and high < low:
                result.errors.append(
                    "Maximum Duration must be greater than or equal to Minimum Duration"
                )
        result.is_valid = not result.errors
        return result

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        params = context.parameters
        delay_type = params.get("delayType")
        try:
            if delay_type == "fixed":
                unit = params.get("unit") or "seconds"
                duration = float(self.replace_variables(params.get("duration"), context))
                seconds = duration * UNIT_SECONDS.get(unit, 1)
                reason = f"Fixed delay of {params.get('duration')} {unit}"
            elif delay_type == "until":
                target = parse_datetime(
                    str(self.replace_variables(params.get("untilTime"), context))
                )
                seconds = max(0.0, (target - datetime.now(timezone.utc)).total_seconds())
                reason = f"Wait until {target.isoformat()}"
            elif delay_type == "random":
                low = float(self.replace_variables(params.get("minDuration"), context))
                high = float(self.replace_variables(params.get("maxDuration"), context))
                seconds = random.uniform(low, high)
                reason = f"Random delay between {low:g}s and {high:g}s"
            else:
                return self.error_result(f"Unknown delay type: {delay_type}")
        except (TypeError, ValueError) as exc:
            return self.error_result(f"Invalid delay configuration: {exc}")

        seconds = max(0.0, seconds)
        cap = self.settings.max_delay_seconds
        if seconds > cap:
            logger.warning("delay_capped", node_id=context.node_id, requested=seconds, cap=cap)
            seconds = float(cap)

        logger.info("delay_started", node_id=context.node_id, reason=reason, delay_ms=seconds * 1000)
        started = datetime.now(timezone.utc)
        if await self._wait(seconds, context.cancel_event):
            return self.error_result(
                "Delay cancelled", metadata={"delayType": delay_type, "cancelled": True}
            )
        finished = datetime.now(timezone.utc)

        delay_ms = seconds * 1000
        output = {
            **self.input_record(context),
            "_delay": {
                "type": delay_type,
                "duration": delay_ms,
                "reason": reason,
                "startTime": started.isoformat(),
                "endTime": finished.isoformat(),
            },
        }
        return self.success_result(
            output, {"delayType": delay_type, "delayMs": delay_ms, "delayReason": reason}
        )

    async def _wait(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep for ``seconds``; True if the cancel event fired first."""
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return False
        if cancel_event.is_set():
            return True
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
