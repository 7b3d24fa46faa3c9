"""Structured logging configuration for Courier.

Every record is a structlog event dict. Delivery code binds the keys in
DELIVERY_CONTEXT_KEYS for the lifetime of one attempt, so a failed webhook
can be traced from claim to verdict with a single filter:

    {"event": "Webhook scheduled for retry", "attempt_id": "dlv_...",
     "subscription_id": "sub_...", "event_id": "evt_...", "try_number": 2,
     "error": "HTTP 503", "next_try": 3}

Secrets and request bodies are never logged.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor

DELIVERY_CONTEXT_KEYS = ("attempt_id", "subscription_id", "event_id", "try_number")

# httpx logs every request URL at INFO; one line per delivery is ours.
_CHATTY_LOGGERS = ("httpx", "httpcore", "aiosqlite")

_configured = False


def configure_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for Courier.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        format: "json" for production, "text" for a colored console.

    Example:
        ```python
        from courier.logging import configure_logging, get_logger

        configure_logging(level="DEBUG", format="text")
        logger = get_logger(__name__)
        logger.info("Retry scheduler started", poll_interval=5.0)
        ```
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format.lower() == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Bind context variables to all subsequent log messages.

    Context lives in contextvars, so each delivery task sees its own copy
    and concurrent attempts never leak IDs into each other's records.

    Example:
        ```python
        bind_context(attempt_id="dlv_...", event_id="evt_...")
        logger.warning("Webhook delivery failed permanently", error="HTTP 410")
        unbind_context(*DELIVERY_CONTEXT_KEYS)
        ```
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    """Remove specific keys from the logging context."""
    structlog.contextvars.unbind_contextvars(*keys)
