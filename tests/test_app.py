from __future__ import annotations

import logging

import pytest

import app


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> dict:
    calls: dict = {}
    monkeypatch.setattr(app, "load_dotenv", lambda: False)
    monkeypatch.setattr(app.logging, "basicConfig", lambda **kwargs: calls.update(kwargs))
    return calls


def test_logging_defaults_to_console_at_info(captured: dict) -> None:
    app._configure_logging({})

    (handler,) = captured["handlers"]
    assert type(handler) is logging.StreamHandler
    assert captured["level"] == logging.INFO


def test_logging_can_be_disabled(captured: dict) -> None:
    app._configure_logging({"enabled": False})
    assert captured == {}


def test_file_logging_rotates_under_configured_path(captured: dict, tmp_path) -> None:
    path = tmp_path / "logs" / "intake.log"
    app._configure_logging({"console": False, "level": "debug", "file": {"enabled": True, "path": str(path)}})

    (handler,) = captured["handlers"]
    try:
        assert handler.baseFilename == str(path)
        assert captured["level"] == logging.DEBUG
    finally:
        handler.close()


def test_redacting_formatter_masks_configured_env_values(captured: dict, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRIDGE_TOKEN", "s3cret-token")
    app._configure_logging({"redact": {"enabled": True, "patterns": ["BRIDGE_TOKEN"]}})

    (handler,) = captured["handlers"]
    record = logging.LogRecord("core.outbound", logging.INFO, __file__, 1, "token=%s", ("s3cret-token",), None)

    assert "s3cret-token" not in handler.format(record)
    assert "token=***" in handler.format(record)
