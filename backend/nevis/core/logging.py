"""Nevis Logging Configuration.

Two output modes: ``structured`` writes one JSON object per line for log
shippers, ``dev`` writes a readable single line. Both redact credential-like
``extra`` fields so a careless ``logger.info(..., extra={"password": ...})``
never reaches the log stream.
"""

import json
import logging
import sys
from typing import Any, Literal

DEV_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(extras)s"

REDACTED = "[REDACTED]"
SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "new_password",
        "current_password",
        "password_hash",
        "token",
        "access_token",
        "refresh_token",
        "reset_token",
        "authorization",
    }
)

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
    | {"message", "asctime", "extras"}
)

_QUIET_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "asyncio")


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra`` fields of a record with credentials masked."""
    extras = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key.startswith("_"):
            continue
        extras[key] = REDACTED if key.lower() in SENSITIVE_FIELDS else value
    return extras


class JSONFormatter(logging.Formatter):
    """One JSON document per record; ``extra`` fields become top-level keys."""

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_extras(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Readable format with ``key=value`` extras appended."""

    def __init__(self):
        super().__init__(fmt=DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        extras = record_extras(record)
        record.extras = (
            " | " + " ".join(f"{k}={v}" for k, v in extras.items()) if extras else ""
        )
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    format_type: Literal["structured", "dev"] = "dev",
) -> None:
    """
    Configure root logging. Safe to call more than once.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'structured' for JSON lines, 'dev' for readable output
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if format_type == "structured" else DevFormatter())
    logging.root.handlers = [handler]
    logging.root.setLevel(numeric_level)

    for logger_name in _QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    # SQL echo only at DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    )

    get_logger("logging").info(f"Logging configured: level={level}, format={format_type}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``nevis`` namespace."""
    return logging.getLogger(f"nevis.{name}")
