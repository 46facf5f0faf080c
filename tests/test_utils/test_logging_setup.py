"""Tests for logging setup and the JSON formatter."""

from __future__ import annotations

import json
import logging

from webguard.utils.config import Config
from webguard.utils.logging_setup import JSONFormatter, setup_logging


def test_json_formatter_includes_security_fields():
    record = logging.LogRecord(
        "webguard.storage.event_store", logging.WARNING, __file__, 1,
        "Security event: %s", ("xss_attempt",), None,
    )
    record.event_type = "xss_attempt"
    record.source_ip = "203.0.113.1"

    data = json.loads(JSONFormatter().format(record))
    assert data["msg"] == "Security event: xss_attempt"
    assert data["event_type"] == "xss_attempt"
    assert data["source_ip"] == "203.0.113.1"
    assert "severity" not in data


def test_setup_logging_replaces_handlers(tmp_path):
    config = Config.from_dict({"logging": {"level": "DEBUG", "directory": str(tmp_path / "logs")}})
    root = setup_logging(config)
    try:
        setup_logging(config)
        assert len(root.handlers) == 2
        assert root.level == logging.DEBUG
        assert (tmp_path / "logs" / "webguard.log").exists()
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        root.setLevel(logging.NOTSET)


def test_setup_logging_without_file(tmp_path):
    config = Config.from_dict({"logging": {"directory": "", "format": "json"}})
    root = setup_logging(config)
    try:
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        root.setLevel(logging.NOTSET)
