"""Retry utilities for storage operations.

Provides exponential backoff retry logic for transient database errors:
SQLite lock contention, PostgreSQL deadlocks and serialization failures,
and dropped connections. Every retried operation runs in its own
transaction, so a retry re-executes the whole unit of work.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from courier.exceptions import StorageError

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = (
    "database is locked",
    "database is busy",
    "deadlock detected",
    "could not serialize access",
    "connection was closed",
)


def is_transient_db_error(exc: SQLAlchemyError) -> bool:
    """Check whether a database error is worth retrying."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and exc.transient


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context."""
    if retry_state.attempt_number >= 1:
        logger.warning(
            "Retrying storage operation",
            extra={
                "attempt": retry_state.attempt_number,
                "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
                "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
            },
        )


# Only retries errors flagged transient; constraint violations and
# programming errors surface immediately.
storage_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=2),
    retry=retry_if_exception(_is_retryable),
    before_sleep=_log_retry,
    reraise=True,
)
