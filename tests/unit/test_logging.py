import json
import logging

import pytest
import structlog

from smarthopper.logging import (
    bind_context,
    bound_context,
    clear_context,
    configure_from_settings,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    clear_context()
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_prod_logs_are_json_with_bound_context(monkeypatch, capsys) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    configure_from_settings()
    bind_context(request_id="req_1")

    logging.getLogger("smarthopper.test").info("provider call done")

    record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert record["event"] == "provider call done"
    assert record["request_id"] == "req_1"
    assert record["level"] == "info"


def test_http_client_loggers_are_quietened(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    configure_from_settings()

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_bound_context_restores_outer_values() -> None:
    with bound_context(provider="OpenAI", model="gpt-4o"):
        with bound_context(model="gpt-5-mini"):
            assert structlog.contextvars.get_contextvars()["model"] == "gpt-5-mini"
        assert structlog.contextvars.get_contextvars() == {
            "provider": "OpenAI",
            "model": "gpt-4o",
        }
    assert structlog.contextvars.get_contextvars() == {}
