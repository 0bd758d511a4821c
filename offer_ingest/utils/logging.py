"""Logging setup shared by the ingestion services.

Loggers write to stdout. Fields passed through ``extra=`` are appended to the
line as ``key=value`` pairs, so task ids and request ids stay visible in
plain-text logs.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Formatter that renders ``extra`` fields after the message."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if not context:
            return line
        rendered = " ".join(f"{key}={context[key]!r}" for key in sorted(context))
        return f"{line} | {rendered}"


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
        level: Log level override; defaults to LOG_LEVEL, then INFO

    Returns:
        logging.Logger: Logger with a single stdout handler
    """
    logger = logging.getLogger(name)

    log_level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ContextFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    return logger
