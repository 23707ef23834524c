from __future__ import annotations

import threading
from typing import Optional

import httpx

from nodeflow.config import Settings, get_settings, reset_settings_cache
from nodeflow.executors.condition import ConditionExecutor
from nodeflow.executors.delay import DelayExecutor
from nodeflow.executors.http_request import HttpRequestExecutor
from nodeflow.executors.trigger import TriggerExecutor
from nodeflow.logging import get_logger
from nodeflow.service.orchestrator import NodeOrchestrator
from nodeflow.service.registry import NodeRegistry

logger = get_logger(__name__)


def build_default_registry(
    settings: Optional[Settings] = None,
    *,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> NodeRegistry:
    """Registry pre-loaded with the built-in node types."""
    settings = settings or get_settings()
    registry = NodeRegistry(strict=settings.strict_registration)
    registry.register("trigger", TriggerExecutor())
    registry.register("condition", ConditionExecutor())
    registry.register("delay", DelayExecutor(settings))
    registry.register("httpRequest", HttpRequestExecutor(settings, transport=http_transport))
    return registry


class Runtime:
    """Holds the process-wide registry and orchestrator."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            strict_registration=self.settings.strict_registration,
            enforce_node_timeouts=self.settings.enforce_node_timeouts,
            test_mode=self.settings.test_mode,
        )
        self.registry = build_default_registry(self.settings, http_transport=http_transport)
        self.orchestrator = NodeOrchestrator(self.registry, settings=self.settings)

        report = self.registry.validate_all()
        if not report.ok:
            logger.warning("runtime_invalid_executors", node_types=report.invalid)
        logger.info(
            "runtime_initialized",
            node_types=self.registry.list_types(),
            valid=len(report.valid),
            invalid=len(report.invalid),
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton.

    Double-checked locking: the unlocked read is the fast path once the
    runtime exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton from a fresh settings read."""
    global runtime
    with _runtime_lock:
        reset_settings_cache()
        runtime = Runtime()
        return runtime
