"""
Logging configuration.

Console logging in either a plain text format or JSON (python-json-logger),
selected by settings.log_format.
"""

import logging
import logging.config
from typing import Any

from pythonjsonlogger import jsonlogger

from src.core.config import settings


class JsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that always carries level, logger name and environment."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = settings.app_env


LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        },
        "json": {
            "()": JsonFormatter,
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": settings.log_format,
        },
    },
    "loggers": {
        "src": {
            "handlers": ["console"],
            "level": settings.log_level,
            "propagate": False,
        },
        "sqlalchemy.engine": {
            "handlers": ["console"],
            "level": "INFO" if settings.debug else "WARNING",
            "propagate": False,
        },
        "uvicorn": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}


def setup_logging() -> logging.Logger:
    """Configure application logging."""
    logging.config.dictConfig(LOGGING_CONFIG)
    logger = logging.getLogger("src")
    logger.info("Logging initialized with level %s", settings.log_level)
    return logger
