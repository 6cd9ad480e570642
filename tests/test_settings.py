from __future__ import annotations

import pytest

from status_api.settings import ApiSettings


def test_defaults_without_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CHECK_INTERVAL_SECONDS", "SCHEDULER_ENABLED", "CORS_ALLOW_ORIGINS", "PORT", "TELEGRAM_BOT_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    s = ApiSettings()
    assert s.check_interval_seconds == 300
    assert s.scheduler_enabled is True
    assert s.cors_allow_origins == ("*",)
    assert s.port == 5000
    assert s.telegram_bot_token == ""


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHECK_INTERVAL_SECONDS", " 60 ")
    monkeypatch.setenv("SCHEDULER_ENABLED", "off")
    monkeypatch.setenv("PROBE_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, ,https://b.example")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", " -1001 ")
    s = ApiSettings()
    assert s.check_interval_seconds == 60
    assert s.scheduler_enabled is False
    assert s.probe_timeout_seconds == 2.5
    assert s.cors_allow_origins == ("https://a.example", "https://b.example")
    assert s.telegram_chat_id == "-1001"


def test_invalid_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHECK_CONCURRENCY", "lots")
    monkeypatch.setenv("SCHEDULER_ENABLED", "maybe")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", " , ")
    monkeypatch.setenv("LOG_LEVEL", "   ")
    s = ApiSettings()
    assert s.check_concurrency == 25
    assert s.scheduler_enabled is True
    assert s.cors_allow_origins == ("*",)
    assert s.log_level == "INFO"
