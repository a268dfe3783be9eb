# tests/test_config.py
import json
import logging

from core.config import Settings
from core.logging_config import JsonFormatter
from core.request_context import set_request_id


def test_settings_defaults(monkeypatch):
    for name in ("GATEWAY_RETRY_ATTEMPTS", "GATEWAY_RETRY_BASE_DELAY", "GEMINI_API_KEY", "API_KEY"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()
    config = settings.retry_config()

    assert settings.gemini_api_key is None
    assert config.attempts == 3
    assert config.base_delay == 2.0


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("GATEWAY_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("GATEWAY_RETRY_BASE_DELAY", "0.5")
    monkeypatch.setenv("GATEWAY_LOG_LEVEL", "debug")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("API_KEY", "legacy-key")

    settings = Settings.from_env()

    assert settings.retry_attempts == 5
    assert settings.retry_config().base_delay == 0.5
    assert settings.log_level == "DEBUG"
    assert settings.gemini_api_key == "legacy-key"


def test_json_formatter_includes_extras_and_request_id():
    set_request_id("req-42")
    record = logging.LogRecord("core.retry", logging.WARNING, __file__, 1, "Retrying after failure", None, None)
    record.event = "retry_attempt"
    record.attempt = 2

    line = json.loads(JsonFormatter().format(record))

    assert line["message"] == "Retrying after failure"
    assert line["level"] == "WARNING"
    assert line["request_id"] == "req-42"
    assert line["event"] == "retry_attempt"
    assert line["attempt"] == 2
    set_request_id(None)
