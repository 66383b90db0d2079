"""
Structured Logging
==================

JSON logs carrying the tenant and request context of the work that wrote them.

Provides:
- JSON formatter with timestamp, environment and secret redaction
- A bound log context (correlation id, organization, actor, task) that is
  merged into every record written while it is active, across awaits
- Latency logging for request handlers and deferred tasks

Usage:
    from helpdesk.shared.infrastructure.logging import get_logger, log_context

    logger = get_logger(__name__)
    with log_context(organization_id=str(org_id)):
        logger.info("Ticket created", extra={"ticket_id": str(ticket.id)})
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from pythonjsonlogger import jsonlogger

_environment = "unknown"

_bound_context: ContextVar[Dict[str, Any]] = ContextVar("helpdesk_log_context", default={})

REDACTED = "***REDACTED***"
REDACTED_KEY_PARTS = ("password", "secret", "token", "webhook_url", "authorization")


class HelpdeskJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding timestamp, environment and the bound context.

    Fields passed in ``extra`` win over bound ones with the same name.
    """

    def add_fields(
        self,
        log_record: logging.LogRecord,
        record_dict: dict[str, Any],
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record_dict, message_dict)

        if not isinstance(record_dict, dict):
            return

        record_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        record_dict["environment"] = _environment

        for key, value in _bound_context.get().items():
            if value is not None:
                record_dict.setdefault(key, value)

        for key, value in list(record_dict.items()):
            if isinstance(value, str) and _is_sensitive(key):
                record_dict[key] = REDACTED


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in REDACTED_KEY_PARTS)


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name stamped on every record
    """
    global _environment
    _environment = environment

    numeric_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(
        HelpdeskJsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    root_logger.addHandler(handler)

    # Third-party loggers stay quiet unless they have something to say
    for name, quiet_level in (
        ("uvicorn.access", logging.WARNING),
        ("uvicorn.error", logging.ERROR),
        ("sqlalchemy.engine", logging.WARNING),
        ("apscheduler", logging.WARNING),
        ("httpx", logging.WARNING),
    ):
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def current_log_context() -> Dict[str, Any]:
    return dict(_bound_context.get())


def bind_log_context(**fields: Any) -> Token:
    """Add fields to the bound context; pass the token to ``reset_log_context``."""
    return _bound_context.set({**_bound_context.get(), **fields})


def reset_log_context(token: Token) -> None:
    _bound_context.reset(token)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields for the duration of the block."""
    token = bind_log_context(**fields)
    try:
        yield
    finally:
        reset_log_context(token)


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any) -> Iterator[None]:
    """
    Log how long the block took, and whether it raised.

    Usage:
        with log_latency(logger, "sla.check", attempt=1):
            await handler(payload)
    """
    start = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except Exception:
        outcome = "error"
        raise
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        log = logger.info if outcome == "ok" else logger.warning
        log(
            f"{operation} finished",
            extra={
                "operation": operation,
                "outcome": outcome,
                "latency_ms": latency_ms,
                **extra_context,
            },
        )
