"""
Logging setup.

Structured stdout logging shared by every quota_refill component.
"""

import json
import logging
import sys
import time


class JsonFormatter(logging.Formatter):
    """Formats each record as one JSON object with a UTC timestamp."""

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage()
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def get_logger(name: str = "quota_refill", level: int = logging.INFO) -> logging.Logger:
    """Return a logger that writes JSON lines with UTC timestamps.

    The handler is attached only once per logger name, so repeated calls
    are safe.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%SZ"))
        logger.addHandler(handler)

    return logger


def set_level(level: int) -> None:
    """Change the level of every quota_refill logger created so far."""
    for name in list(logging.root.manager.loggerDict):
        if name == "quota_refill" or name.startswith("quota_refill."):
            logging.getLogger(name).setLevel(level)
