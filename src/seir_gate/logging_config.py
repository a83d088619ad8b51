"""
Logging setup for the gate commands.

Diagnostics are written to stderr; stdout carries only the gate transcript.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

LOGGER_NAME = "seir_gate"

# SDK loggers that would otherwise echo request parameters at INFO
SDK_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer")

LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
RESET = "\033[0m"


class SeirFormatter(logging.Formatter):
    """``[HH:MM:SS.mmm] LEVEL [logger] message``, colored on a TTY"""

    def __init__(self, use_colors: bool = True, stream: Optional[TextIO] = None):
        super().__init__()
        target = sys.stderr if stream is None else stream
        self.use_colors = use_colors and getattr(target, "isatty", lambda: False)()

    def _level(self, levelname: str) -> str:
        if not self.use_colors:
            return levelname
        return f"{LEVEL_COLORS.get(levelname, '')}{levelname}{RESET}"

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        line = f"[{clock}] {self._level(record.levelname):8} [{record.name}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line} {self.formatException(record.exc_info)}"
        return line


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setFormatter(SeirFormatter(use_colors=False))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: Optional[str] = None,
    use_colors: bool = True,
) -> None:
    """
    Attach stderr (and optionally file) handlers to the package logger.

    Calling it again replaces the handlers from the previous call.
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    package_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(SeirFormatter(use_colors=use_colors, stream=sys.stderr))
    package_logger.addHandler(stderr_handler)

    if log_file:
        package_logger.addHandler(_file_handler(log_file))

    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.debug(f"Logging at {level.upper()}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
