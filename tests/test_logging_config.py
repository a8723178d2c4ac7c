"""Tests for log formatting."""

import json
import logging
import sys

import pytest

from docsyphon.config import settings
from docsyphon.logging_config import STANDARD_FORMAT, _build_formatter, json_formatter


def _record(msg="Stream %s failed", args=("telegram-main",), exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        "docsyphon.pipeline.processor",
        logging.WARNING,
        "/srv/docsyphon/pipeline/processor.py",
        42,
        msg,
        args,
        exc_info,
    )


class TestJsonFormatter:
    """Test JSON log rendering."""

    def test_record_fields(self):
        """Test a stdlib record renders as a JSON object with its metadata."""
        entry = json.loads(json_formatter().format(_record()))

        assert entry["event"] == "Stream telegram-main failed"
        assert entry["level"] == "warning"
        assert entry["logger"] == "docsyphon.pipeline.processor"
        assert entry["module"] == "processor"
        assert entry["lineno"] == 42
        assert "T" in entry["timestamp"]

    def test_exception_rendered(self):
        """Test exception tracebacks end up inside the JSON object."""
        try:
            raise ValueError("bad window")
        except ValueError:
            exc_info = sys.exc_info()

        output = json_formatter().format(_record("Window failed", (), exc_info))
        entry = json.loads(output)

        assert "ValueError: bad window" in entry["exception"]
        assert "\n" not in output


class TestBuildFormatter:
    """Test formatter selection from settings."""

    def test_standard_format(self, monkeypatch: pytest.MonkeyPatch):
        """Test the default format is the bracketed text layout."""
        monkeypatch.setattr(settings, "log_format", "standard")
        formatter = _build_formatter()

        assert formatter._fmt == STANDARD_FORMAT

    def test_json_format(self, monkeypatch: pytest.MonkeyPatch):
        """Test log_format=json selects the JSON renderer."""
        monkeypatch.setattr(settings, "log_format", "json")
        output = _build_formatter().format(_record())

        assert json.loads(output)["event"] == "Stream telegram-main failed"
