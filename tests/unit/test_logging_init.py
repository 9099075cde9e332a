from __future__ import annotations

import logging
from io import StringIO

from statement_recon.logging.init import (
    APP_LOGGER_NAME,
    LabeledFormatter,
    get_logger,
    log_summary,
    reset_logging,
    set_debug,
    setup_logging,
)


def test_setup_logging_creates_logger_with_labeled_formatter(clean_logging):
    logger = setup_logging()
    assert logger.name == APP_LOGGER_NAME == "statement_recon"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent(clean_logging):
    first = setup_logging()
    second = setup_logging()
    assert first is second
    assert len(second.handlers) == 1
    assert get_logger() is first


def test_labeled_prefixes(clean_logging):
    stream = StringIO()
    logger = setup_logging(stream=stream)
    logger.info("Test info message")
    logger.warning("Test warning message")
    logger.error("Test error message")
    log_summary("rows=1")
    lines = stream.getvalue().strip().split("\n")
    assert lines == [
        "INFO Test info message",
        "WARN Test warning message",
        "ERROR Test error message",
        "SUMMARY rows=1",
    ]


def test_module_loggers_share_the_app_handler(clean_logging):
    stream = StringIO()
    setup_logging(stream=stream)
    logging.getLogger("statement_recon.services.committer").info("sacco=s1 inserted=1")
    assert stream.getvalue() == "INFO sacco=s1 inserted=1\n"


def test_debug_mode(clean_logging):
    stream = StringIO()
    logger = setup_logging(stream=stream)
    logger.debug("hidden")
    set_debug()
    logger.debug("shown")
    assert stream.getvalue() == "DEBUG shown\n"
    assert logger.level == logging.DEBUG


def test_reset_logging_removes_handlers(clean_logging):
    logger = setup_logging()
    reset_logging()
    assert logger.handlers == []
