"""Logging configuration for business cycle metrics."""

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

LOGGER_NAMESPACE = "cycle_metrics"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Structured fields are passed as extra={"extra": {...}}
        if hasattr(record, "extra"):
            log_data.update(record.extra)

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


def configure_logging() -> logging.Logger:
    """Configure and return the root package logger.

    Safe to call more than once; handlers are only attached the first time.
    """
    logger = logging.getLogger(LOGGER_NAMESPACE)

    if logger.handlers:
        return logger

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)

    log_format = os.environ.get("LOG_FORMAT", "text")
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name under the cycle_metrics namespace."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
