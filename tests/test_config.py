from __future__ import annotations

import pytest
from pydantic import ValidationError

from nodeflow.config import Settings, get_settings, reset_settings_cache


def test_defaults():
    settings = Settings()
    assert settings.strict_registration is False
    assert settings.enforce_node_timeouts is False
    assert settings.max_node_timeout_seconds == 86400
    assert settings.http_timeout_seconds == 30.0
    assert settings.http_max_redirects == 5


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("NODEFLOW_ENFORCE_NODE_TIMEOUTS", "true")
    monkeypatch.setenv("NODEFLOW_HTTP_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("TEST_MODE", "true")

    settings = Settings.from_env()

    assert settings.enforce_node_timeouts is True
    assert settings.http_timeout_seconds == 2.5
    assert settings.test_mode is True


def test_settings_cached_until_reset(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("NODEFLOW_HTTP_MAX_REDIRECTS", "1")
    reset_settings_cache()

    assert get_settings() is not first
    assert get_settings().http_max_redirects == 1


def test_rejects_invalid_values():
    with pytest.raises(ValidationError):
        Settings(http_timeout_seconds=0)


def test_delay_cap_clamped():
    assert Settings(max_delay_seconds=30 * 86400).max_delay_seconds == 7 * 86400
