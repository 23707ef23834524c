"""Resolution of ``{{ expression }}`` tokens against an execution context.

Expressions look values up in one of four places:

- ``$input.<path>``: the first upstream input item
- ``$node.<path>``: previous node outputs
- ``$vars.<path>``: workflow variables
- ``<path>``: the node's merged parameters

Paths are dotted; mapping segments are keys and sequence segments are integer
indexes. Resolution is best-effort per token: a token that cannot be resolved
is left in the output verbatim and reported in ``diagnostics``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

TOKEN_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

INPUT_PREFIX = "$input."
NODE_PREFIX = "$node."
VARS_PREFIX = "$vars."

MAX_STRUCTURE_DEPTH = 20


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True)
class InterpolationDiagnostic:
    token: str
    expression: str
    reason: str  # "unresolved" or "error"
    detail: Optional[str] = None


@dataclass
class InterpolationResult:
    value: Any
    diagnostics: List[InterpolationDiagnostic] = field(default_factory=list)

    @property
    def fully_resolved(self) -> bool:
        return not self.diagnostics


def resolve_path(obj: Any, path: str, default: Any = MISSING) -> Any:
    """Walk ``obj`` along a dotted ``path``.

    An empty path returns ``obj`` itself. Missing keys, out-of-range indexes
    and traversal into scalars return ``default``.
    """
    if not path:
        return obj
    current = obj
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not segment.lstrip("-").isdigit():
                return default
            index = int(segment)
            if index < 0 or index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def lookup_expression(expression: str, context: Any) -> Any:
    """Resolve one trimmed expression; returns ``MISSING`` when absent."""
    if expression.startswith(INPUT_PREFIX):
        input_data = getattr(context, "input_data", None) or []
        if not input_data:
            return MISSING
        return resolve_path(input_data[0], expression[len(INPUT_PREFIX):])
    if expression.startswith(NODE_PREFIX):
        return resolve_path(
            getattr(context, "previous_node_outputs", None) or {},
            expression[len(NODE_PREFIX):],
        )
    if expression.startswith(VARS_PREFIX):
        return resolve_path(
            getattr(context, "workflow_variables", None) or {},
            expression[len(VARS_PREFIX):],
        )
    return resolve_path(getattr(context, "parameters", None) or {}, expression)


def render(value: Any) -> str:
    """Deterministic text form of a resolved value."""
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)


def interpolate(template: Any, context: Any) -> InterpolationResult:
    """Replace every ``{{ ... }}`` token in ``template``.

    Non-string templates are returned unchanged. A ``None`` or missing value
    keeps its token; falsy values such as ``0`` or ``""`` are substituted.
    """
    if not isinstance(template, str):
        return InterpolationResult(template)

    diagnostics: List[InterpolationDiagnostic] = []

    def _substitute(match: "re.Match[str]") -> str:
        token = match.group(0)
        expression = match.group(1).strip()
        try:
            value = lookup_expression(expression, context)
            if value is MISSING or value is None:
                diagnostics.append(
                    InterpolationDiagnostic(token, expression, "unresolved")
                )
                return token
            return render(value)
        except Exception as exc:
            diagnostics.append(
                InterpolationDiagnostic(token, expression, "error", str(exc))
            )
            return token

    return InterpolationResult(TOKEN_PATTERN.sub(_substitute, template), diagnostics)


def interpolate_value(
    value: Any, context: Any, *, max_depth: int = MAX_STRUCTURE_DEPTH
) -> InterpolationResult:
    """Interpolate every string leaf of a nested mapping/list structure.

    Keys are left as-is. Containers are rebuilt so the input is never
    modified. Structures deeper than ``max_depth`` are returned untouched
    below that level.
    """
    diagnostics: List[InterpolationDiagnostic] = []

    def _walk(node: Any, depth: int) -> Any:
        if depth > max_depth:
            return node
        if isinstance(node, str):
            result = interpolate(node, context)
            diagnostics.extend(result.diagnostics)
            return result.value
        if isinstance(node, Mapping):
            return {key: _walk(item, depth + 1) for key, item in node.items()}
        if isinstance(node, list):
            return [_walk(item, depth + 1) for item in node]
        if isinstance(node, tuple):
            return tuple(_walk(item, depth + 1) for item in node)
        return node

    return InterpolationResult(_walk(value, 0), diagnostics)


def find_tokens(template: str) -> List[str]:
    """Return the trimmed expressions referenced by ``template``."""
    if not isinstance(template, str):
        return []
    return [match.group(1).strip() for match in TOKEN_PATTERN.finditer(template)]
