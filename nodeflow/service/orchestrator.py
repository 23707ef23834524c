from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from nodeflow.config import Settings, get_settings
from nodeflow.executors.base import NodeExecutor
from nodeflow.logging import bind_execution_context, get_logger, log_sequence_trace
from nodeflow.service.context import build_execution_context
from nodeflow.service.errors import (
    NodeCancelledError,
    NodeExecutionError,
    NodeTimeoutError,
    NodeValidationError,
    UnsupportedNodeTypeError,
)
from nodeflow.service.models import (
    ExecutionContext,
    ExecutionResult,
    NodeOption,
    NodeTestResult,
    WorkflowNode,
)
from nodeflow.service.registry import NodeRegistry


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 3)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class NodeOrchestrator:
    """Runs single nodes or linear node sequences against a registry.

    Nothing raised while resolving, validating or executing a node crosses
    this boundary: every failure comes back as a failed ``ExecutionResult``
    whose ``metadata["errorCode"]`` names the failure class. Task
    cancellation (``asyncio.CancelledError``) is not intercepted.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or get_settings()
        self.logger = get_logger(__name__)

    async def execute_node(
        self,
        node: WorkflowNode | Mapping[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionResult:
        start = time.monotonic()
        node_meta = self._describe(node)
        try:
            node = WorkflowNode.coerce(node)
            executor = self.registry.get(node.type)
            if executor is None:
                raise UnsupportedNodeTypeError(node.type)

            full_context = build_execution_context(node, context)
            with bind_execution_context(
                full_context.execution_id, node_id=node.id, node_type=node.type
            ):
                result = await self._run(executor, node, full_context)
        except NodeExecutionError as exc:
            self.logger.warning(
                "node_execution_rejected",
                node_id=node_meta["nodeId"],
                node_type=node_meta["nodeType"],
                error_code=exc.error_code,
                error=exc.message,
            )
            return self._failure(
                exc.message,
                node_meta,
                error_code=exc.error_code,
                execution_time=_elapsed_ms(start),
                should_retry=isinstance(exc, NodeTimeoutError),
                detail=exc.detail,
            )
        except Exception as exc:
            self.logger.error(
                "node_execution_failed",
                node_id=node_meta["nodeId"],
                node_type=node_meta["nodeType"],
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self._failure(
                f"Execution failed: {exc}",
                node_meta,
                error_code="execution_error",
                execution_time=_elapsed_ms(start),
            )

        result.metadata = {
            "itemsProcessed": len(result.data),
            **(result.metadata or {}),
            **node_meta,
            "executionTime": _elapsed_ms(start),
            "timestamp": _timestamp(),
        }
        self.logger.info(
            "node_execution_completed",
            node_id=node_meta["nodeId"],
            node_name=node_meta["nodeName"],
            node_type=node_meta["nodeType"],
            success=result.success,
            execution_time_ms=result.metadata["executionTime"],
        )
        return result

    async def _run(
        self, executor: NodeExecutor, node: WorkflowNode, context: ExecutionContext
    ) -> ExecutionResult:
        if context.cancelled:
            raise NodeCancelledError("Node execution cancelled before start")

        validation = executor.validate(context.parameters)
        if not validation.is_valid:
            raise NodeValidationError(validation.errors)

        self.logger.info(
            "node_execution_started",
            node_name=node.label,
            retry_count=context.retry_count,
            is_retry=context.is_retry,
        )
        timeout = self._timeout_for(node.type)
        if timeout is None:
            result = await executor.execute(context)
        else:
            try:
                result = await asyncio.wait_for(executor.execute(context), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise NodeTimeoutError(
                    f"Node timed out after {timeout:g}s",
                    detail={"timeout_seconds": timeout},
                ) from exc

        if not isinstance(result, ExecutionResult):
            raise TypeError(
                f"{type(executor).__name__}.execute returned {type(result).__name__}, "
                "expected ExecutionResult"
            )
        if validation.warnings:
            result.logs = [*validation.warnings, *result.logs]
        return result

    def _timeout_for(self, node_type: str) -> Optional[float]:
        if not self.settings.enforce_node_timeouts:
            return None
        schema = self.registry.get_schema(node_type)
        hint = schema.resources.timeout_seconds if schema is not None else None
        if not hint:
            return None
        return float(min(hint, self.settings.max_node_timeout_seconds))

    async def execute_sequence(
        self,
        nodes: Sequence[WorkflowNode | Mapping[str, Any]],
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[ExecutionResult]:
        """Run ``nodes`` one after another, feeding each node's ``data`` forward.

        Stops after the first result whose ``should_advance`` is false; that
        result is still returned. Named output branches are reported on the
        results but never followed here.
        """
        base: Dict[str, Any] = dict(context or {})
        current_data: List[Any] = list(base.get("input_data") or [])
        previous_outputs: Dict[str, Any] = dict(base.get("previous_node_outputs") or {})
        results: List[ExecutionResult] = []
        trace: List[Dict[str, Any]] = []

        for index, node in enumerate(nodes):
            node_context = {
                **base,
                "input_data": current_data,
                "previous_node_outputs": dict(previous_outputs),
            }
            result = await self.execute_node(node, node_context)
            results.append(result)
            trace.append(
                {
                    "index": index,
                    "node_id": result.metadata.get("nodeId"),
                    "status": "ok" if result.success else "error",
                    "duration_ms": result.metadata.get("executionTime"),
                    "branches": result.fired_branches,
                }
            )

            if not result.should_advance:
                self.logger.info(
                    "node_sequence_stopped",
                    index=index,
                    node_id=result.metadata.get("nodeId"),
                    success=result.success,
                    remaining=len(nodes) - index - 1,
                )
                break

            if result.success:
                current_data = list(result.data)
                for key in (result.metadata.get("nodeId"), result.metadata.get("nodeName")):
                    if key:
                        previous_outputs[key] = list(result.data)

        log_sequence_trace(trace, self.logger)
        return results

    async def test_node(
        self,
        node: WorkflowNode | Mapping[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> NodeTestResult:
        """Dry run: validate and, with credentials, test the connection.

        ``execute`` is never called.
        """
        try:
            node = WorkflowNode.coerce(node)
            executor = self.registry.get(node.type)
            if executor is None:
                return NodeTestResult(
                    valid=False, errors=[f"No executor found for node type: {node.type}"]
                )

            full_context = build_execution_context(node, context)
            validation = executor.validate(full_context.parameters)
            errors = list(validation.errors)
            valid = validation.is_valid

            test_connection = getattr(executor, "test_connection", None)
            if callable(test_connection) and full_context.credentials:
                try:
                    if not await test_connection(full_context.credentials):
                        errors.append("Connection test failed")
                        valid = False
                except Exception as exc:
                    errors.append(f"Connection test error: {exc}")
                    valid = False

            return NodeTestResult(valid=valid, errors=errors, warnings=list(validation.warnings))
        except Exception as exc:
            self.logger.warning("node_test_failed", error=str(exc))
            return NodeTestResult(valid=False, errors=[f"Test failed: {exc}"])

    async def get_node_options(
        self,
        node_type: str,
        option_name: str,
        credentials: Optional[Mapping[str, Any]] = None,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> List[NodeOption]:
        executor = self.registry.get(node_type)
        get_options = getattr(executor, "get_options", None) if executor else None
        if not callable(get_options):
            return []
        try:
            options = await get_options(option_name, dict(credentials or {}), dict(parameters or {}))
            return [NodeOption.coerce(option) for option in options or []]
        except Exception as exc:
            self.logger.error(
                "node_options_failed",
                node_type=node_type,
                option_name=option_name,
                error=str(exc),
            )
            return []

    def _describe(self, node: Any) -> Dict[str, Any]:
        if isinstance(node, WorkflowNode):
            return {"nodeId": node.id, "nodeName": node.name, "nodeType": node.type}
        if isinstance(node, Mapping):
            return {
                "nodeId": str(node.get("id") or ""),
                "nodeName": str(node.get("name") or ""),
                "nodeType": str(node.get("type") or ""),
            }
        return {"nodeId": "", "nodeName": "", "nodeType": ""}

    def _failure(
        self,
        message: str,
        node_meta: Dict[str, Any],
        *,
        error_code: str,
        execution_time: float,
        should_retry: bool = False,
        detail: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        metadata: Dict[str, Any] = {
            **node_meta,
            "executionTime": execution_time,
            "timestamp": _timestamp(),
            "errorCode": error_code,
        }
        if detail and "errors" in detail:
            metadata["validationErrors"] = list(detail["errors"])
        return ExecutionResult.fail(message, should_retry=should_retry, metadata=metadata)
