"""
Tests for logging setup
"""

import io
import logging
import re

import pytest

from seir_gate.logging_config import SeirFormatter, get_logger, setup_logging


@pytest.fixture
def package_logger():
    logger = logging.getLogger("seir_gate")
    yield logger
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


class TestSeirFormatter:
    """Tests for the log line layout"""

    def test_plain_layout(self):
        """Should render time, level, logger name and message"""
        record = logging.LogRecord("seir_gate.cli", logging.WARNING, __file__, 1, "slow query", None, None)

        line = SeirFormatter(use_colors=False).format(record)

        assert re.match(r"^\[\d{2}:\d{2}:\d{2}\.\d{3}\] WARNING  \[seir_gate\.cli\] slow query$", line)

    def test_no_colors_off_tty(self):
        """Should not color output for a stream that is not a terminal"""
        formatter = SeirFormatter(use_colors=True, stream=io.StringIO())
        assert formatter.use_colors is False


class TestSetupLogging:
    """Tests for setup_logging"""

    def test_level_and_single_console_handler(self, package_logger):
        """Should set the level and replace handlers on repeated calls"""
        setup_logging(level="DEBUG", use_colors=False)
        setup_logging(level="INFO", use_colors=False)

        assert package_logger.level == logging.INFO
        assert len(package_logger.handlers) == 1

    def test_log_file(self, package_logger, tmp_path):
        """Should create the log directory and write records to the file"""
        log_file = tmp_path / "logs" / "gate.log"

        setup_logging(level="INFO", log_file=str(log_file), use_colors=False)
        get_logger("test").info("gate started")
        for handler in package_logger.handlers:
            handler.flush()

        assert "[seir_gate.test] gate started" in log_file.read_text()

    def test_sdk_loggers_quieted(self, package_logger):
        """Should keep AWS SDK loggers at WARNING"""
        setup_logging(level="DEBUG", use_colors=False)

        assert logging.getLogger("botocore").level == logging.WARNING
        assert logging.getLogger("boto3").level == logging.WARNING
