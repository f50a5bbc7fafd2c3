"""Tests for logger setup."""

import logging
import logging.handlers

from diag_agent.utils.logger import get_logger, setup_logger


def test_file_logging(tmp_path):
    log_file = tmp_path / "logs" / "agent.log"

    logger = setup_logger("diag_agent_test_file", console_level_name="ERROR",
                          file_level_name="DEBUG", log_file_path=str(log_file), force=True)
    logger.debug("rotating file check")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert any(isinstance(handler, logging.handlers.RotatingFileHandler) for handler in logger.handlers)
    assert "rotating file check" in log_file.read_text(encoding="utf-8")


def test_setup_is_cached_unless_forced():
    first = setup_logger("diag_agent_test_cached", console_level_name="WARNING")
    again = setup_logger("diag_agent_test_cached", console_level_name="DEBUG")

    assert again is first
    assert first.level == logging.WARNING

    setup_logger("diag_agent_test_cached", console_level_name="DEBUG", force=True)
    assert first.level == logging.DEBUG
    assert len(first.handlers) == 1


def test_invalid_level_falls_back_to_info():
    logger = setup_logger("diag_agent_test_level", console_level_name="LOUD", force=True)
    assert logger.level == logging.INFO


def test_module_loggers_propagate_to_package_logger():
    logger = get_logger("diag_agent.some.module")

    assert logger.name == "diag_agent.some.module"
    assert logger.propagate
    assert logging.getLogger("diag_agent").handlers
