"""JSON log formatting and contextual fields."""

from __future__ import annotations

import json
import logging

import pytest

from prepmint.core.logging import JsonFormatter, configure_logging, log_context


def _record(**extra) -> logging.LogRecord:
    fields = {"name": "prepmint.store", "levelname": "WARNING", "msg": "Failed %s", "args": ("x",)}
    return logging.makeLogRecord({**fields, **extra})


def test_context_fields_become_top_level_keys() -> None:
    line = JsonFormatter().format(_record(**log_context(source="users", record_id="u1", status=None)))
    payload = json.loads(line)
    assert payload["message"] == "Failed x"
    assert payload["source"] == "users"
    assert payload["record_id"] == "u1"
    assert "status" not in payload
    assert "ctx_source" not in payload


def test_context_cannot_shadow_core_fields() -> None:
    payload = json.loads(JsonFormatter().format(_record(**log_context(message="spoofed"))))
    assert payload["message"] == "Failed x"


def test_format_and_level_come_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PMNT_LOG_FORMAT", "text")
    monkeypatch.setenv("PMNT_LOG_LEVEL", "debug")
    root = logging.getLogger()
    handlers, level = root.handlers, root.level
    try:
        configure_logging()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("urllib3").level == logging.WARNING
    finally:
        root.handlers = handlers
        root.setLevel(level)
