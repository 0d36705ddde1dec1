"""
Logging for PinClaim.

Everything logs under the ``pinclaim`` hierarchy. ``configure_logging``
attaches one stream handler with either a plain or a one-object-per-line
JSON format; both pass through ``PinRedactionFilter`` so a PIN that slips
into a message never reaches the output.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import IO

LOGGER_NAME = "pinclaim"

PLAIN_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"

# "PIN: 1234", "pin=1234", "PIN 1234"
_PIN_PATTERN = re.compile(r"(\bpin\b\s*[:=]?\s*)\d{4}\b", re.IGNORECASE)


def redact_pins(text: str) -> str:
    return _PIN_PATTERN.sub(r"\g<1>****", text)


class PinRedactionFilter(logging.Filter):
    """Masks four-digit PINs in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_pins(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log shippers in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, separators=(",", ":"))


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Configure the PinClaim logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Emit JSON lines instead of the plain format
        stream: Output stream, stdout by default

    Returns:
        The configured logger instance.
    """
    if isinstance(level, str):
        level = level.upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Re-configuring replaces the previous handler
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.addFilter(PinRedactionFilter())
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
    logger.addHandler(handler)

    # Host applications keep their own root configuration
    logger.propagate = False

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger of pinclaim."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
