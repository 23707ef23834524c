from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from nodeflow.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the node execution engine."""

    strict_registration: bool = env_field(
        False,
        "NODEFLOW_STRICT_REGISTRATION",
        description="Reject duplicate node type registration instead of overriding",
    )
    enforce_node_timeouts: bool = env_field(
        False,
        "NODEFLOW_ENFORCE_NODE_TIMEOUTS",
        description="Enforce NodeSchema.resources.timeout_seconds around execute()",
    )
    max_node_timeout_seconds: int = env_field(
        86400, "NODEFLOW_MAX_NODE_TIMEOUT_SECONDS", gt=0
    )
    http_timeout_seconds: float = env_field(30.0, "NODEFLOW_HTTP_TIMEOUT_SECONDS", gt=0)
    http_connect_timeout_seconds: float = env_field(
        10.0, "NODEFLOW_HTTP_CONNECT_TIMEOUT_SECONDS", gt=0
    )
    http_max_redirects: int = env_field(5, "NODEFLOW_HTTP_MAX_REDIRECTS", ge=0)
    max_delay_seconds: int = env_field(
        86400,
        "NODEFLOW_MAX_DELAY_SECONDS",
        ge=0,
        description="Upper bound for a single delay node wait",
    )
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("max_delay_seconds")
    @classmethod
    def _cap_delay(cls, value: int) -> int:
        if value > 7 * 86400:
            logger.warning("max_delay_seconds_capped", requested=value, cap=7 * 86400)
            return 7 * 86400
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
