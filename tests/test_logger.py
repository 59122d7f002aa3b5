"""Tests for logging configuration."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from mcnode.logger import configure_logging


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    configure_logging("INFO")


def test_configure_sets_root_level():
    configure_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    configure_logging("WARNING")
    assert logging.getLogger().level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    configure_logging("chatty")
    assert logging.getLogger().level == logging.INFO


def test_json_output_renders_event(caplog):
    configure_logging("INFO", "json")
    structlog.get_logger("mcnode").info("Container started", identity="lobby-alice")
    (record,) = [r for r in caplog.records if "Container started" in r.getMessage()]
    payload = json.loads(record.getMessage())
    assert payload["event"] == "Container started"
    assert payload["identity"] == "lobby-alice"
    assert payload["level"] == "info"
