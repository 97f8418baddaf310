from __future__ import annotations

import pytest
from pydantic import ValidationError

from apidriver.config import Settings, get_settings


def test_defaults():
    settings = Settings()
    assert settings.root_url == ""
    assert settings.default_headers == {"Content-Type": "application/json"}
    assert settings.poll_delay_ms == 10
    assert settings.poll_timeout_ms == 10000
    assert settings.trace is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("APIDRIVER_ROOT_URL", "http://localhost:3000")
    monkeypatch.setenv("APIDRIVER_POLL_TIMEOUT_MS", "250")
    monkeypatch.setenv("APIDRIVER_DEFAULT_HEADERS", '{"Accept": "application/json"}')
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.root_url == "http://localhost:3000"
    assert settings.poll_timeout_ms == 250
    assert settings.default_headers == {"Accept": "application/json"}
    assert get_settings() is settings


def test_negative_delay_rejected(monkeypatch):
    monkeypatch.setenv("APIDRIVER_POLL_DELAY_MS", "-5")
    with pytest.raises(ValidationError):
        Settings()
