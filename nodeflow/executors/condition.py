from __future__ import annotations

import json
import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

from nodeflow.executors.base import NodeExecutor
from nodeflow.logging import get_logger
from nodeflow.service.interpolation import (
    INPUT_PREFIX,
    MISSING,
    NODE_PREFIX,
    VARS_PREFIX,
    resolve_path,
)
from nodeflow.service.models import (
    ExecutionContext,
    ExecutionResult,
    NodeOption,
    NodeProperty,
    NodeSchema,
    ResourceHints,
    ValidationResult,
)

logger = get_logger(__name__)

TRUE_PORT = "true"
FALSE_PORT = "false"


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def _to_text(value: Any) -> str:
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _is_empty(value: Any) -> bool:
    if value is None or value is MISSING:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _equals(actual: Any, expected: str) -> bool:
    actual_num, expected_num = _to_number(actual), _to_number(expected)
    if actual_num is not None and expected_num is not None:
        return actual_num == expected_num
    return _to_text(actual) == expected


def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, str], bool]:
    def _check(actual: Any, expected: str) -> bool:
        actual_num, expected_num = _to_number(actual), _to_number(expected)
        if actual_num is None or expected_num is None:
            return False
        return op(actual_num, expected_num)

    return _check


def _membership(negate: bool) -> Callable[[Any, str], bool]:
    """``in``/``notIn``: a JSON array or a comma-separated list.

    A value that parses as JSON but is not an array never matches, for
    either operator.
    """

    def _check(actual: Any, expected: str) -> bool:
        try:
            candidates = json.loads(expected)
        except ValueError:
            parts = [part.strip() for part in expected.split(",")]
            return (_to_text(actual) in parts) != negate
        if not isinstance(candidates, list):
            return False
        return (actual in candidates) != negate

    return _check


def _regex(actual: Any, expected: str) -> bool:
    try:
        return re.search(expected, _to_text(actual)) is not None
    except re.error:
        logger.warning("condition_invalid_regex", pattern=expected)
        return False


OPERATORS: Dict[str, Callable[[Any, str], bool]] = {
    "equals": _equals,
    "notEquals": lambda a, e: not _equals(a, e),
    "contains": lambda a, e: e.lower() in _to_text(a).lower(),
    "notContains": lambda a, e: e.lower() not in _to_text(a).lower(),
    "startsWith": lambda a, e: _to_text(a).lower().startswith(e.lower()),
    "endsWith": lambda a, e: _to_text(a).lower().endswith(e.lower()),
    "greaterThan": _compare(lambda a, e: a > e),
    "greaterThanOrEqual": _compare(lambda a, e: a >= e),
    "lessThan": _compare(lambda a, e: a < e),
    "lessThanOrEqual": _compare(lambda a, e: a <= e),
    "isEmpty": lambda a, e: _is_empty(a),
    "isNotEmpty": lambda a, e: not _is_empty(a),
    "isNull": lambda a, e: a is None or a is MISSING,
    "isNotNull": lambda a, e: a is not None and a is not MISSING,
    "regex": _regex,
    "in": _membership(negate=False),
    "notIn": _membership(negate=True),
}


class ConditionExecutor(NodeExecutor):
    """Evaluate conditions against the first input item and route to true/false."""

    def get_schema(self) -> NodeSchema:
        return NodeSchema(
            name="condition",
            display_name="Condition",
            description="Route workflow based on conditions",
            group=("core", "logic"),
            icon="fas:code-branch",
            color="#FF9800",
            inputs=("main",),
            outputs=(TRUE_PORT, FALSE_PORT),
            properties=(
                NodeProperty(
                    name="conditions",
                    display_name="Conditions",
                    type="json",
                    required=True,
                    default=[
                        {"field": "", "operator": "equals", "value": ""},
                    ],
                    description="Array of conditions to evaluate",
                ),
                NodeProperty(
                    name="combineOperation",
                    display_name="Combine Operation",
                    type="options",
                    default="AND",
                    options=(
                        NodeOption("AND (All conditions must be true)", "AND"),
                        NodeOption("OR (Any condition must be true)", "OR"),
                    ),
                    description="How to combine multiple conditions",
                ),
            ),
            resources=ResourceHints(memory_mb=16, timeout_seconds=10),
        )

    def validate(self, parameters: Mapping[str, Any]) -> ValidationResult:
        result = super().validate(parameters)
        raw = parameters.get("conditions")
        if raw is None or not result.is_valid:
            return result
        conditions = self._load_conditions(raw)
        if conditions is None:
            result.errors.append("Conditions must be a list of condition objects")
        else:
            for index, condition in enumerate(conditions):
                if not isinstance(condition, Mapping):
                    result.errors.append(f"Condition {index + 1} must be an object")
                    continue
                operator = condition.get("operator", "equals")
                if operator not in OPERATORS:
                    result.errors.append(
                        f"Condition {index + 1} has unknown operator: {operator}"
                    )
        result.is_valid = not result.errors
        return result

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        conditions = self._load_conditions(context.parameters.get("conditions"))
        combine = str(context.parameters.get("combineOperation") or "AND").upper()
        if not conditions:
            return self.error_result("At least one condition is required")

        input_item = context.first_input if context.first_input is not None else {}
        results: List[bool] = []
        logs: List[str] = []
        for condition in conditions:
            outcome = self._evaluate(condition, input_item, context)
            results.append(outcome)
            logs.append(
                f"Condition evaluated: {condition.get('field', '')} "
                f"{condition.get('operator', 'equals')} {condition.get('value', '')} = {outcome}"
            )

        final = all(results) if combine == "AND" else any(results)
        port = TRUE_PORT if final else FALSE_PORT
        logger.info(
            "condition_evaluated",
            node_id=context.node_id,
            result=final,
            conditions=len(conditions),
            combine=combine,
        )

        output = {
            "conditionResult": final,
            "evaluatedConditions": [
                {**condition, "result": outcome}
                for condition, outcome in zip(conditions, results)
            ],
            "inputData": input_item,
        }
        return self.success_result(
            output,
            {
                "conditionResult": final,
                "conditionsEvaluated": len(conditions),
                "combineOperation": combine,
            },
            outputs={port: [output]},
            next_nodes=[port],
            logs=logs,
        )

    def _load_conditions(self, raw: Any) -> Optional[List[Any]]:
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                return None
        if isinstance(raw, Mapping):
            return [raw]
        if isinstance(raw, list):
            return raw
        return None

    def _evaluate(
        self, condition: Mapping[str, Any], input_item: Any, context: ExecutionContext
    ) -> bool:
        operator = condition.get("operator", "equals")
        check = OPERATORS.get(operator)
        if check is None:
            logger.warning("condition_unknown_operator", operator=operator)
            return False
        actual = self._field_value(str(condition.get("field") or ""), input_item, context)
        expected = self.replace_variables(_to_text(condition.get("value")), context)
        return check(actual, expected)

    def _field_value(self, field: str, input_item: Any, context: ExecutionContext) -> Any:
        if not field:
            return input_item
        if field.startswith(INPUT_PREFIX):
            return resolve_path(input_item, field[len(INPUT_PREFIX):], None)
        if field.startswith(NODE_PREFIX):
            return resolve_path(context.previous_node_outputs, field[len(NODE_PREFIX):], None)
        if field.startswith(VARS_PREFIX):
            return resolve_path(context.workflow_variables, field[len(VARS_PREFIX):], None)
        return resolve_path(input_item, field, None)
