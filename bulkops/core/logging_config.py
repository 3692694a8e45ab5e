"""
Logging setup for the bulk operations service.

Engine, parser and API modules log through ``logging.getLogger(__name__)``
under the ``bulkops`` namespace. ``configure_logging`` wires one console
handler for them and keeps chatty third-party loggers at WARNING unless SQL
statement logging is requested.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional


_is_configured = False

# Third-party loggers that flood the console at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "python_multipart", "multipart")


def configure_logging(level: Optional[str] = None, log_sql: bool = False) -> None:
    """
    Configure the console handler and package loggers once per process.

    Args:
        level: Log level for the ``bulkops`` namespace (e.g. "DEBUG", "INFO").
        log_sql: Emit SQLAlchemy statements at INFO.
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()
    loggers = {name: {"level": "WARNING"} for name in _QUIET_LOGGERS}
    if log_sql:
        loggers["sqlalchemy.engine"] = {"level": "INFO"}
    loggers["bulkops"] = {"level": log_level}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "bulkops": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "bulkops",
                }
            },
            "loggers": loggers,
            "root": {"handlers": ["console"], "level": "WARNING"},
        }
    )

    _is_configured = True
    logging.getLogger(__name__).debug("Logging configured at %s (sql=%s)", log_level, log_sql)
