"""Tests for the logging setup."""
import logging

import pytest

from ceylon_air.logging_config import configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_debug_level_reaches_root_handler(restore_root_logger):
    configure_logging(logging.DEBUG)

    assert restore_root_logger.level == logging.DEBUG
    assert [handler.level for handler in restore_root_logger.handlers] == [logging.DEBUG]
    assert logging.getLogger("uvicorn").level == logging.DEBUG


def test_httpx_stays_at_warning(restore_root_logger):
    configure_logging(logging.DEBUG)

    assert logging.getLogger("httpx").level == logging.WARNING
