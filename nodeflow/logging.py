from __future__ import annotations

import logging
import os
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog

# Correlation ID for the node execution currently in flight
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_SECRET_KEYS = frozenset({
    "password", "secret", "token", "api_key", "apikey", "authorization",
    "credentials", "private_key", "access_key", "client_secret",
})


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID for execution tracing."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set or generate a correlation ID for the current execution context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


@contextmanager
def bind_execution_context(
    execution_id: Optional[str], **fields: Any
) -> Iterator[str]:
    """Bind the execution id as correlation id plus extra log fields.

    Previous bindings are restored on exit so nested executions keep their
    own correlation ids.
    """
    token = correlation_id_var.set(execution_id or str(uuid.uuid4()))
    bound = structlog.contextvars.bind_contextvars(**fields)
    try:
        yield correlation_id_var.get() or ""
    finally:
        structlog.contextvars.reset_contextvars(**bound)
        correlation_id_var.reset(token)


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to add correlation_id to all log entries."""
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _is_secret_key(key: Any) -> bool:
    """Match on key components so ``accessToken`` is secret but ``tokens`` is not."""
    normalized = _CAMEL_BOUNDARY.sub("_", str(key)).lower().replace("-", "_")
    if normalized in _SECRET_KEYS:
        return True
    parts = [part for part in normalized.split("_") if part]
    pairs = ("_".join(parts[i:i + 2]) for i in range(len(parts) - 1))
    return any(part in _SECRET_KEYS for part in parts) or any(
        pair in _SECRET_KEYS for pair in pairs
    )


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor masking secret-looking fields before rendering."""
    for key in list(event_dict.keys()):
        value = event_dict[key]
        if not _is_secret_key(key):
            continue
        if isinstance(value, str) and len(value) > 4:
            # Keep first/last 2 chars for debugging
            event_dict[key] = value[:2] + "***" + value[-2:]
        elif isinstance(value, (dict, list)):
            event_dict[key] = redact_credentials(value, mask_all=True)
        elif value is not None:
            event_dict[key] = "***"
    return event_dict


def redact_credentials(
    data: Any, *, mask_all: bool = False, depth: int = 0, max_depth: int = 20
) -> Any:
    """Mask credential values in an arbitrary structure.

    Mappings keep their keys. Scalars under a secret-looking key, or anywhere
    below one, become ``"[REDACTED]"``; ``mask_all`` treats the whole input as
    secret.
    """
    if depth > max_depth:
        return "[max depth exceeded]"
    if isinstance(data, dict):
        return {
            key: redact_credentials(
                value,
                mask_all=mask_all or _is_secret_key(key),
                depth=depth + 1,
                max_depth=max_depth,
            )
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [
            redact_credentials(
                item, mask_all=mask_all, depth=depth + 1, max_depth=max_depth
            )
            for item in data
        ]
    if mask_all and data is not None:
        return "[REDACTED]"
    return data


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Initialize logging on module import
_log_level = os.getenv("LOG_LEVEL", "INFO").upper()
_json_output = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}
_dev_mode = os.getenv("LOG_DEV_MODE", "false").lower() in {"1", "true", "yes", "on"}

_configure_structlog(
    log_level=_log_level,
    json_output=_json_output,
    development_mode=_dev_mode,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger with correlation ID support."""
    return structlog.get_logger(name)


def log_sequence_trace(trace: list, logger: Optional[Any] = None) -> None:
    """Log a compact per-node trace once a sequence finishes."""
    log = logger or get_logger("sequence")
    log.info("node_sequence_trace", trace=trace)
