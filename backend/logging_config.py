"""Structured logging configuration for the Kappa Score Collector.

JSON output for production and a human-readable format for local development.

Environment Variables:
    LOG_FORMAT: Set to "json" for JSON output, anything else for human-readable.
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR). Defaults to INFO.
"""

import copy
import logging
import os
import sys
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger import jsonlogger

# Request-scoped context, filled in by the HTTP middleware
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_current_user: ContextVar[str | None] = ContextVar("current_user", default=None)
_current_project: ContextVar[str | None] = ContextVar("current_project", default=None)

LOG_FORMAT = os.getenv("LOG_FORMAT", "").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID in context."""
    _correlation_id.set(correlation_id)


def get_current_user() -> str | None:
    """Get the current user from context."""
    return _current_user.get()


def set_current_user(username: str | None) -> None:
    """Set the current user in context."""
    _current_user.set(username)


def get_current_project() -> str | None:
    return _current_project.get()


def set_current_project(project_id: str | None) -> None:
    _current_project.set(project_id)


def _context_fields() -> dict[str, str]:
    """Collect whichever request context values are set."""
    context = {
        "correlation_id": get_correlation_id(),
        "user": get_current_user(),
        "project_id": get_current_project(),
    }
    return {key: value for key, value in context.items() if value}


class ContextAwareJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds request context to every record."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["message"] = record.getMessage()
        log_record.update(_context_fields())

        # Structured extras passed as logger.info(..., extra={"extra_fields": {...}})
        if hasattr(record, "extra_fields"):
            log_record.update(record.extra_fields)


class ContextAwareFormatter(logging.Formatter):
    """Human-readable formatter with a short context prefix."""

    def format(self, record: logging.LogRecord) -> str:
        record = copy.copy(record)

        context = _context_fields()
        parts = []
        if "correlation_id" in context:
            parts.append(f"[{context['correlation_id'][:8]}]")
        if "user" in context:
            parts.append(f"[{context['user']}]")
        if "project_id" in context:
            parts.append(f"[project={context['project_id'][:8]}]")

        prefix = " ".join(parts)
        if prefix:
            prefix += " "

        # Rewrite the copy, never the original record
        record.msg = f"{prefix}{record.getMessage()}"
        record.args = ()

        return super().format(record)


def build_formatter(log_format: str = LOG_FORMAT) -> logging.Formatter:
    """Pick the formatter for the configured output format."""
    if log_format == "json":
        return ContextAwareJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    return ContextAwareFormatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging() -> None:
    """Configure root logging based on environment.

    Call once at application startup. Existing root handlers are replaced
    so repeated calls do not duplicate output.
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(build_formatter())
    root_logger.addHandler(handler)

    logging.getLogger(__name__).info(
        "Logging configured. Format: %s, Level: %s",
        "json" if LOG_FORMAT == "json" else "human-readable",
        LOG_LEVEL,
    )
