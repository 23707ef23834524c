from __future__ import annotations

from typing import List, Optional


class NodeExecutionError(Exception):
    """Base class for node engine exceptions.

    Each subclass carries a stable ``error_code``. The orchestrator never lets
    these escape; it converts them into failed results and copies the code to
    ``metadata["errorCode"]``:
    - execution_error
    - unsupported_node_type
    - validation_error
    - duplicate_node_type
    - node_timeout
    - node_cancelled
    """

    error_code: str = "execution_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class UnsupportedNodeTypeError(NodeExecutionError):
    """No executor registered for the requested node type."""
    error_code = "unsupported_node_type"

    def __init__(self, node_type: str) -> None:
        super().__init__(
            f"No executor found for node type: {node_type}",
            detail={"node_type": node_type},
        )
        self.node_type = node_type


class NodeValidationError(NodeExecutionError):
    """Node parameters failed the executor's validate() gate."""
    error_code = "validation_error"

    def __init__(self, errors: List[str]) -> None:
        super().__init__(
            f"Node validation failed: {', '.join(errors)}",
            detail={"errors": list(errors)},
        )
        self.errors = list(errors)


class DuplicateNodeTypeError(NodeExecutionError):
    """Raised by strict registries when a node type is registered twice."""
    error_code = "duplicate_node_type"


class NodeTimeoutError(NodeExecutionError):
    """Executor exceeded its resource timeout."""
    error_code = "node_timeout"


class NodeCancelledError(NodeExecutionError):
    """Execution was cancelled through the context's cancel event."""
    error_code = "node_cancelled"


__all__ = [
    "NodeExecutionError",
    "UnsupportedNodeTypeError",
    "NodeValidationError",
    "DuplicateNodeTypeError",
    "NodeTimeoutError",
    "NodeCancelledError",
]
