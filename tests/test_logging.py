"""Tests for logging setup."""

import logging
import sys

import pytest
import structlog

from secgate.logging import configure_logging


@pytest.fixture
def restore_logging():
    """Put the quiet test configuration back after configure_logging runs."""
    config = structlog.get_config()
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.configure(**config)


def test_string_level_and_stderr_stream(restore_logging):
    configure_logging("debug", log_format="console")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert root.handlers[0].stream is sys.stderr
    assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)


def test_json_is_default_renderer(restore_logging):
    configure_logging(logging.WARNING)

    assert logging.getLogger().level == logging.WARNING
    assert isinstance(
        structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer
    )


def test_unknown_level_falls_back_to_info(restore_logging):
    configure_logging("chatty")

    assert logging.getLogger().level == logging.INFO
