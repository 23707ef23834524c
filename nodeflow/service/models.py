from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypedDict,
    get_args,
)

PropertyType = Literal[
    "string",
    "number",
    "boolean",
    "options",
    "multiOptions",
    "json",
    "dateTime",
    "color",
]
PROPERTY_TYPES = frozenset(get_args(PropertyType))

# Matches a parameter value that is a single {{ ... }} template; such values are
# only resolved at execute time, so type checks accept them for any property.
TEMPLATE_VALUE_PATTERN = r"^\s*\{\{[^}]+\}\}\s*$"
# Strings executors coerce with float() / to_bool() at execute time.
NUMERIC_STRING_PATTERN = r"^\s*-?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?\s*$"
BOOLEAN_STRINGS = ("true", "false", "True", "False")


@dataclass(frozen=True)
class NodeOption:
    """A ``{name, value}`` pair for static choices or dynamic option lists."""

    name: str
    value: Any

    @classmethod
    def coerce(cls, raw: Any) -> "NodeOption":
        if isinstance(raw, NodeOption):
            return raw
        if isinstance(raw, Mapping):
            return cls(name=str(raw.get("name", raw.get("value", ""))), value=raw.get("value"))
        return cls(name=str(raw), value=raw)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class DisplayOptions:
    """Conditional visibility keyed on sibling property values."""

    show: Mapping[str, Sequence[Any]] = field(default_factory=dict)
    hide: Mapping[str, Sequence[Any]] = field(default_factory=dict)

    def allows(self, parameters: Mapping[str, Any]) -> bool:
        for name, values in self.show.items():
            if parameters.get(name) not in values:
                return False
        for name, values in self.hide.items():
            if parameters.get(name) in values:
                return False
        return True


@dataclass(frozen=True)
class NodeProperty:
    name: str
    display_name: str
    type: PropertyType
    required: bool = False
    default: Any = None
    placeholder: Optional[str] = None
    description: Optional[str] = None
    options: Tuple[NodeOption, ...] = ()
    multiple_values: bool = False
    display_options: Optional[DisplayOptions] = None

    def __post_init__(self) -> None:
        if self.type not in PROPERTY_TYPES:
            raise ValueError(f"unknown property type {self.type!r} for {self.name}")
        object.__setattr__(
            self, "options", tuple(NodeOption.coerce(o) for o in self.options)
        )

    def is_visible(self, parameters: Mapping[str, Any]) -> bool:
        if self.display_options is None:
            return True
        return self.display_options.allows(parameters)

    def option_values(self) -> List[Any]:
        return [option.value for option in self.options]

    def value_schema(self) -> Dict[str, Any]:
        """JSON schema for a supplied (non-null) value of this property."""
        if self.type in {"string", "dateTime", "color"}:
            base: Dict[str, Any] = {"type": "string"}
        elif self.type == "number":
            base = {"type": "number"}
        elif self.type == "boolean":
            base = {"type": "boolean"}
        elif self.type == "options":
            base = {"enum": self.option_values()} if self.options else {}
        elif self.type == "multiOptions":
            base = {"type": "array"}
            if self.options:
                base["items"] = {"enum": self.option_values()}
        else:
            base = {}
        coercible: List[Dict[str, Any]] = []
        if self.type == "number":
            coercible.append({"type": "string", "pattern": NUMERIC_STRING_PATTERN})
        elif self.type == "boolean":
            coercible.append({"enum": list(BOOLEAN_STRINGS)})
        if self.multiple_values and self.type != "multiOptions":
            items = {"anyOf": [base, *coercible]} if coercible else base
            base, coercible = {"type": "array", "items": items}, []
        if not base or base.get("type") == "string":
            return base
        return {
            "anyOf": [
                base,
                *coercible,
                {"type": "string", "pattern": TEMPLATE_VALUE_PATTERN},
            ]
        }

    def describe_expected(self) -> str:
        if self.type == "options" and self.options:
            return "one of: " + ", ".join(str(v) for v in self.option_values())
        if self.type == "multiOptions":
            return "a list of allowed options"
        return {
            "number": "a number",
            "boolean": "a boolean",
            "string": "a string",
            "dateTime": "a date-time string",
            "color": "a color string",
        }.get(self.type, "valid JSON")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "displayName": self.display_name,
            "type": self.type,
            "required": self.required,
            "default": self.default,
        }
        if self.placeholder is not None:
            payload["placeholder"] = self.placeholder
        if self.description is not None:
            payload["description"] = self.description
        if self.options:
            payload["options"] = [o.to_dict() for o in self.options]
        if self.multiple_values:
            payload["multipleValues"] = True
        if self.display_options is not None:
            payload["displayOptions"] = {
                "show": {k: list(v) for k, v in self.display_options.show.items()},
                "hide": {k: list(v) for k, v in self.display_options.hide.items()},
            }
        return payload


@dataclass(frozen=True)
class CredentialRequirement:
    name: str
    required: bool = True
    display_name: Optional[str] = None


@dataclass(frozen=True)
class ResourceHints:
    memory_mb: Optional[int] = None
    timeout_seconds: Optional[float] = None
    rate_limit_per_minute: Optional[int] = None


@dataclass(frozen=True)
class NodeSchema:
    """Static self-description of an executor, independent of any run."""

    name: str
    display_name: str
    description: str
    version: int = 1
    group: Tuple[str, ...] = ()
    icon: Optional[str] = None
    color: Optional[str] = None
    inputs: Tuple[str, ...] = ("main",)
    outputs: Tuple[str, ...] = ("main",)
    credentials: Tuple[CredentialRequirement, ...] = ()
    properties: Tuple[NodeProperty, ...] = ()
    resources: ResourceHints = field(default_factory=ResourceHints)

    def __post_init__(self) -> None:
        for attr in ("group", "inputs", "outputs", "credentials", "properties"):
            value = getattr(self, attr)
            if value is not None:
                object.__setattr__(self, attr, tuple(value))

    def get_property(self, name: str) -> Optional[NodeProperty]:
        for prop in self.properties or ():
            if prop.name == name:
                return prop
        return None

    def defaults(self) -> Dict[str, Any]:
        return {
            prop.name: prop.default
            for prop in self.properties or ()
            if prop.default is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        resources = {
            key: value
            for key, value in (
                ("memoryMB", self.resources.memory_mb),
                ("timeoutSeconds", self.resources.timeout_seconds),
                ("rateLimitPerMinute", self.resources.rate_limit_per_minute),
            )
            if value is not None
        }
        return {
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "version": self.version,
            "group": list(self.group),
            "icon": self.icon,
            "color": self.color,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "credentials": [
                {"name": c.name, "required": c.required, "displayName": c.display_name}
                for c in self.credentials
            ],
            "properties": [p.to_dict() for p in self.properties or ()],
            "resources": resources,
        }


@dataclass(frozen=True)
class WorkflowNode:
    """Persisted node definition as handed to the engine."""

    id: str
    type: str
    name: str = ""
    workflow_id: str = ""
    configuration: Mapping[str, Any] = field(default_factory=dict)
    is_enabled: bool = True
    execution_order: int = 0

    @classmethod
    def coerce(cls, raw: Any) -> "WorkflowNode":
        if isinstance(raw, WorkflowNode):
            return raw
        if isinstance(raw, Mapping):
            node_type = raw.get("type")
            if not node_type:
                raise ValueError("node definition is missing a type")
            return cls(
                id=str(raw.get("id") or ""),
                type=str(node_type),
                name=str(raw.get("name") or ""),
                workflow_id=str(raw.get("workflow_id") or raw.get("workflowId") or ""),
                configuration=raw.get("configuration") or {},
                is_enabled=bool(raw.get("is_enabled", raw.get("isEnabled", True))),
                execution_order=int(
                    raw.get("execution_order", raw.get("executionOrder", 0)) or 0
                ),
            )
        raise TypeError(f"unsupported node definition: {type(raw).__name__}")

    @property
    def label(self) -> str:
        return self.name or self.id or self.type


class PartialContext(TypedDict, total=False):
    """Per-run overrides accepted by the context builder."""

    workflow_id: str
    execution_id: str
    organization_id: str
    user_id: str
    input_data: List[Any]
    parameters: Dict[str, Any]
    credentials: Optional[Dict[str, Any]]
    previous_node_outputs: Dict[str, Any]
    workflow_variables: Dict[str, Any]
    metadata: Dict[str, Any]
    retry_count: int
    is_retry: bool
    cancel_event: Optional[asyncio.Event]


PARTIAL_CONTEXT_KEYS = frozenset(PartialContext.__annotations__)


@dataclass(frozen=True)
class ExecutionContext:
    """Everything an executor needs for one invocation. Never mutated."""

    node_id: str
    workflow_id: str
    execution_id: str
    organization_id: str
    user_id: str
    node: WorkflowNode
    input_data: List[Any] = field(default_factory=list)
    parameters: Dict[str, Any] = field(default_factory=dict)
    credentials: Optional[Dict[str, Any]] = None
    previous_node_outputs: Dict[str, Any] = field(default_factory=dict)
    workflow_variables: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    is_retry: bool = False
    cancel_event: Optional[asyncio.Event] = field(default=None, compare=False, repr=False)

    @property
    def first_input(self) -> Any:
        return self.input_data[0] if self.input_data else None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def derive(self, **changes: Any) -> "ExecutionContext":
        """Return a new context with ``changes`` applied."""
        return replace(self, **changes)


def _contains(items: Sequence[Any], candidate: Any) -> bool:
    return any(item is candidate or item == candidate for item in items)


@dataclass
class ExecutionResult:
    """Value returned by every executor.

    ``should_continue`` defaults to ``success`` so a failure stops a sequence
    unless the executor opts back in. Items routed to named ``outputs`` are
    always present in the flat ``data`` list.
    """

    success: bool
    data: List[Any] = field(default_factory=list)
    outputs: Optional[Dict[str, List[Any]]] = None
    error: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    should_continue: Optional[bool] = None
    next_nodes: Optional[List[str]] = None
    should_retry: bool = False
    retry_after: Optional[float] = None

    def __post_init__(self) -> None:
        if self.data is None:
            self.data = []
        elif not isinstance(self.data, list):
            self.data = list(self.data) if isinstance(self.data, tuple) else [self.data]
        if self.should_continue is None:
            self.should_continue = self.success
        if self.success:
            self.error = None
        elif not self.error:
            self.error = "Node execution failed"
        if self.outputs:
            self.outputs = {
                port: list(items) if isinstance(items, (list, tuple)) else [items]
                for port, items in self.outputs.items()
            }
            for items in self.outputs.values():
                for item in items:
                    if not _contains(self.data, item):
                        self.data.append(item)

    @classmethod
    def ok(
        cls,
        output: Any = None,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        outputs: Optional[Dict[str, List[Any]]] = None,
        next_nodes: Optional[List[str]] = None,
        logs: Optional[List[str]] = None,
    ) -> "ExecutionResult":
        if output is None:
            data: List[Any] = []
        elif isinstance(output, list):
            data = list(output)
        else:
            data = [output]
        return cls(
            success=True,
            data=data,
            outputs=outputs,
            metadata=dict(metadata or {}),
            should_continue=True,
            next_nodes=next_nodes,
            logs=list(logs or []),
        )

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        should_retry: bool = False,
        retry_after: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        logs: Optional[List[str]] = None,
    ) -> "ExecutionResult":
        return cls(
            success=False,
            error=error,
            should_continue=False,
            should_retry=should_retry,
            retry_after=retry_after,
            metadata=dict(metadata or {}),
            logs=list(logs or []),
        )

    @property
    def should_advance(self) -> bool:
        """Whether a linear sequence may run the next node after this one.

        ``should_continue`` defaults to ``success``, so this is
        ``success and should_continue`` except for failures whose executor
        explicitly set ``should_continue=True``.
        """
        return bool(self.should_continue)

    @property
    def fired_branches(self) -> List[str]:
        if not self.outputs:
            return []
        return [port for port, items in self.outputs.items() if items]

    def branch_items(self, port: str) -> List[Any]:
        return list((self.outputs or {}).get(port, []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": list(self.data),
            "outputs": dict(self.outputs) if self.outputs is not None else None,
            "error": self.error,
            "logs": list(self.logs),
            "metadata": dict(self.metadata),
            "should_continue": self.should_continue,
            "next_nodes": list(self.next_nodes) if self.next_nodes is not None else None,
            "should_retry": self.should_retry,
            "retry_after": self.retry_after,
        }


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(
        cls, errors: Sequence[str], warnings: Optional[Sequence[str]] = None
    ) -> "ValidationResult":
        return cls(is_valid=not errors, errors=list(errors), warnings=list(warnings or []))


@dataclass
class NodeTestResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class RegistryReport:
    valid: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.invalid
