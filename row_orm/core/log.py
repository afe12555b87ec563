"""Logging configuration helpers.

Library modules only ever call ``logging.getLogger(__name__)``; this
module is for applications and scripts that want RowORM's statement log
on a console, optionally as JSON lines.

Usage:
    from row_orm.core.log import configure_logging

    configure_logging(level="DEBUG")
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any

STATEMENT_LOGGER = "row_orm.sql"


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("sql", "params", "elapsed_ms"):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure the ``row_orm`` logger tree.

    Args:
        level: Logging level name (e.g. "DEBUG", "INFO").
        json_logs: Emit JSON lines instead of the console format.
    """
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "loggers": {
                "row_orm": {"handlers": ["default"], "level": level, "propagate": False},
            },
        }
    )


__all__ = ["STATEMENT_LOGGER", "JsonFormatter", "configure_logging"]
