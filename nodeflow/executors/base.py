"""Contract every node type implements.

Concrete executors subclass ``NodeExecutor`` and provide ``execute`` and
``get_schema``. ``validate`` has a schema-driven default. Two operations are
optional and detected by attribute lookup; leaving them out means the node
does not support them:

    async def test_connection(self, credentials) -> bool
    async def get_options(self, option_name, credentials, parameters) -> list[NodeOption]
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft202012Validator

from nodeflow.logging import get_logger
from nodeflow.service.interpolation import (
    INPUT_PREFIX,
    NODE_PREFIX,
    VARS_PREFIX,
    find_tokens,
    interpolate,
    interpolate_value,
)
from nodeflow.service.models import (
    ExecutionContext,
    ExecutionResult,
    NodeSchema,
    ValidationResult,
)

logger = get_logger(__name__)

_KNOWN_NAMESPACES = (INPUT_PREFIX, NODE_PREFIX, VARS_PREFIX)


def is_blank(value: Any) -> bool:
    """A required property counts as missing when None or an empty string."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def to_bool(value: Any, default: bool = False) -> bool:
    """Read a boolean parameter that may arrive as ``"true"``/``"false"``."""
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"true", "1", "yes", "on"}:
            return True
        if text in {"false", "0", "no", "off", ""}:
            return False
        return default
    return bool(value)


class NodeExecutor(ABC):
    """Base class for every node type's executor."""

    @abstractmethod
    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        """Run the node.

        Expected failures (bad credentials, remote errors, bad input) must be
        returned via ``error_result``; only unexpected faults may raise.
        """

    @abstractmethod
    def get_schema(self) -> NodeSchema:
        """Return this node type's static schema. Must be stable across calls."""

    def validate(self, parameters: Mapping[str, Any]) -> ValidationResult:
        """Check required, visible properties and the type of supplied values.

        Override and call ``super().validate`` to add cross-field rules.
        """
        schema = self.get_schema()
        errors: List[str] = []
        warnings: List[str] = []
        for prop in schema.properties:
            value = parameters.get(prop.name)
            if prop.required and prop.is_visible(parameters) and is_blank(value):
                errors.append(f"{prop.display_name} is required")
                continue
            if value is None:
                continue
            value_schema = prop.value_schema()
            if value_schema and not Draft202012Validator(value_schema).is_valid(value):
                errors.append(f"{prop.display_name} must be {prop.describe_expected()}")
            warnings.extend(self._template_warnings(prop.display_name, value))
        return ValidationResult.from_errors(errors, warnings)

    def _template_warnings(self, label: str, value: Any, depth: int = 0) -> List[str]:
        if depth > 10:
            return []
        if isinstance(value, str):
            return [
                f"{label} references unknown namespace in {{{{{expr}}}}}"
                for expr in find_tokens(value)
                if expr.startswith("$") and not expr.startswith(_KNOWN_NAMESPACES)
            ]
        if isinstance(value, Mapping):
            value = list(value.values())
        if isinstance(value, list):
            found: List[str] = []
            for item in value:
                found.extend(self._template_warnings(label, item, depth + 1))
            return found
        return []

    def success_result(
        self, output: Any, metadata: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> ExecutionResult:
        return ExecutionResult.ok(output, metadata=metadata, **kwargs)

    def error_result(
        self,
        message: str,
        should_retry: bool = False,
        retry_after: Optional[float] = None,
        **kwargs: Any,
    ) -> ExecutionResult:
        return ExecutionResult.fail(
            message, should_retry=should_retry, retry_after=retry_after, **kwargs
        )

    def replace_variables(self, value: Any, context: ExecutionContext) -> Any:
        """Interpolate one string; non-strings pass through unchanged."""
        result = interpolate(value, context)
        self._log_unresolved(result.diagnostics, context)
        return result.value

    def process_value(self, value: Any, context: ExecutionContext) -> Any:
        """Interpolate every string leaf of a nested value."""
        result = interpolate_value(value, context)
        self._log_unresolved(result.diagnostics, context)
        return result.value

    def input_record(self, context: ExecutionContext) -> Dict[str, Any]:
        """The first input item as a fresh dict (non-mappings land under ``value``)."""
        first = context.first_input
        if first is None:
            return {}
        if isinstance(first, Mapping):
            return dict(first)
        return {"value": first}

    def _log_unresolved(self, diagnostics: list, context: ExecutionContext) -> None:
        if not diagnostics:
            return
        logger.debug(
            "interpolation_unresolved",
            node_id=context.node_id,
            executor=type(self).__name__,
            unresolved=[d.token for d in diagnostics],
            errors=[d.detail for d in diagnostics if d.reason == "error"],
        )
