"""
Tests for logging setup
"""

import logging

import pytest

from meshcall.utils.log import LOG_LEVEL_MAP, TRACE, configure_logging


@pytest.fixture
def logger_name():
    name = "meshcall.test_log_setup"
    yield name
    logging.getLogger(name).setLevel(logging.NOTSET)


@pytest.mark.parametrize("level, expected", [
    ("error", logging.ERROR),
    ("warn", logging.WARNING),
    ("info", logging.INFO),
    ("debug", logging.DEBUG),
    ("trace", TRACE),
])
def test_levels(logger_name, level, expected):
    configure_logging(level, logger_name)
    assert logging.getLogger(logger_name).level == expected


def test_off_silences_everything(logger_name):
    configure_logging("off", logger_name)
    assert not logging.getLogger(logger_name).isEnabledFor(logging.CRITICAL)


def test_none_leaves_logging_untouched(logger_name):
    logging.getLogger(logger_name).setLevel(logging.WARNING)
    configure_logging(None, logger_name)
    assert logging.getLogger(logger_name).level == logging.WARNING


def test_trace_level_name():
    assert logging.getLevelName(TRACE) == "TRACE"
    assert set(LOG_LEVEL_MAP) == {"off", "error", "warn", "info", "debug", "trace"}
