"""Delivery attempt persistence.

Attempts move through their state machine with conditional UPDATEs: every
transition names the status it expects to leave, and a transition that
matches no row did not happen. The PENDING -> IN_FLIGHT claim is the only
way to obtain a DeliveryJob, so at most one worker ever sends a given
attempt.

Transactions are short. A claim, the HTTP call, and the recording of its
outcome are three separate steps; no session is held while a receiver is
being called.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, cast

from sqlalchemy import and_, not_, select, update
from sqlalchemy.engine import CursorResult

from courier.exceptions import NotFoundError, PermanentDeliveryError
from courier.logging import get_logger
from courier.models import (
    Clock,
    DeliveryAttempt,
    DeliveryStatus,
    DeliverySummary,
    Event,
    generate_id,
    utcnow,
)

from .database import Database
from .retry import storage_retry
from .tables import DeliveryAttemptRow, EventRow, SubscriptionRow

logger = get_logger(__name__)

ABANDONED_ERROR = "subscription deleted or disabled"

PENDING = DeliveryStatus.PENDING.value
IN_FLIGHT = DeliveryStatus.IN_FLIGHT.value


@dataclass(frozen=True)
class DeliveryJob:
    """Everything a worker needs to send one claimed attempt."""

    attempt: DeliveryAttempt
    target_url: str
    secret: str
    body: str
    max_tries: int | None = None
    timeout_seconds: float | None = None


def _rowcount(result: Any) -> int:
    return cast(CursorResult[Any], result).rowcount


def _to_attempt(row: DeliveryAttemptRow) -> DeliveryAttempt:
    return DeliveryAttempt(
        id=row.id,
        event_id=row.event_id,
        subscription_id=row.subscription_id,
        event_type=row.event_type,
        try_number=row.try_number,
        status=row.status,
        scheduled_at=row.scheduled_at,
        attempted_at=row.attempted_at,
        completed_at=row.completed_at,
        response_status=row.response_status,
        response_body=row.response_body,
        error=row.error,
        error_code=row.error_code,
        duration_ms=row.duration_ms,
        next_retry_at=row.next_retry_at,
        created_at=row.created_at,
    )


def _to_row(attempt: DeliveryAttempt) -> DeliveryAttemptRow:
    values = attempt.model_dump()
    values["event_type"] = attempt.event_type.value
    values["status"] = attempt.status.value
    return DeliveryAttemptRow(**values)


def _transition(attempt_id: str, source: DeliveryStatus, target: DeliveryStatus) -> Any:
    """Conditional UPDATE moving one attempt from ``source`` to ``target``.

    Callers chain extra ``where`` guards and column ``values`` onto it.
    """
    if not source.can_transition_to(target):
        raise ValueError(f"Invalid delivery transition {source.value} -> {target.value}")
    return (
        update(DeliveryAttemptRow)
        .where(DeliveryAttemptRow.id == attempt_id, DeliveryAttemptRow.status == source.value)
        .values(status=target.value)
        .execution_options(synchronize_session=False)
    )


def _active_subscription_exists() -> Any:
    return (
        select(SubscriptionRow.id)
        .where(
            SubscriptionRow.id == DeliveryAttemptRow.subscription_id,
            SubscriptionRow.active.is_(True),
        )
        .correlate(DeliveryAttemptRow)
        .exists()
    )


class DeliveryStore:
    """Persists events and delivery attempts and applies their transitions."""

    def __init__(self, database: Database, *, clock: Clock = utcnow) -> None:
        self._db = database
        self._clock = clock

    @storage_retry
    async def create_attempts(
        self,
        event: Event,
        body: str,
        subscription_ids: Sequence[str],
    ) -> list[DeliveryAttempt]:
        """Store the event snapshot and one PENDING try-1 attempt per subscription.

        Everything is written in a single transaction: either all attempts
        exist afterwards or none do.

        Args:
            event: The published event.
            body: Serialized request body, sent unchanged on every try.
            subscription_ids: Matching subscriptions.

        Returns:
            The created attempts, in subscription order.
        """
        if not subscription_ids:
            return []

        now = self._clock()
        attempts = [
            DeliveryAttempt(
                id=generate_id("dlv"),
                event_id=event.id,
                subscription_id=subscription_id,
                event_type=event.event_type,
                try_number=1,
                status=DeliveryStatus.PENDING,
                scheduled_at=now,
                created_at=now,
            )
            for subscription_id in subscription_ids
        ]

        async with self._db.session() as session:
            session.add(
                EventRow(
                    id=event.id,
                    event_type=event.event_type.value,
                    occurred_at=event.occurred_at,
                    body=body,
                    created_at=now,
                )
            )
            await session.flush()
            session.add_all([_to_row(attempt) for attempt in attempts])

        return attempts

    @storage_retry
    async def get(self, attempt_id: str) -> DeliveryAttempt:
        """Get an attempt by ID.

        Raises:
            NotFoundError: If the attempt does not exist.
        """
        async with self._db.session() as session:
            row = await session.get(DeliveryAttemptRow, attempt_id)
            if row is None:
                raise NotFoundError("delivery_attempt", attempt_id)
            return _to_attempt(row)

    @storage_retry
    async def claim(self, attempt_id: str) -> DeliveryJob | None:
        """Move a due PENDING attempt to IN_FLIGHT.

        The claim succeeds only if the attempt is still PENDING, is due, and
        its subscription still exists and is active.

        Returns:
            The job to send, or None if the attempt could not be claimed.
        """
        now = self._clock()
        async with self._db.session() as session:
            result = await session.execute(
                _transition(attempt_id, DeliveryStatus.PENDING, DeliveryStatus.IN_FLIGHT)
                .where(DeliveryAttemptRow.scheduled_at <= now, _active_subscription_exists())
                .values(attempted_at=now)
            )
            if _rowcount(result) != 1:
                return None

            row = (
                await session.execute(
                    select(
                        DeliveryAttemptRow,
                        EventRow.body,
                        SubscriptionRow.target_url,
                        SubscriptionRow.secret,
                        SubscriptionRow.max_tries,
                        SubscriptionRow.timeout_seconds,
                    )
                    .join(EventRow, EventRow.id == DeliveryAttemptRow.event_id)
                    .join(SubscriptionRow, SubscriptionRow.id == DeliveryAttemptRow.subscription_id)
                    .where(DeliveryAttemptRow.id == attempt_id)
                )
            ).one()

            attempt_row, body, target_url, secret, max_tries, timeout_seconds = row
            return DeliveryJob(
                attempt=_to_attempt(attempt_row),
                target_url=target_url,
                secret=secret,
                body=body,
                max_tries=max_tries,
                timeout_seconds=timeout_seconds,
            )

    @storage_retry
    async def abandon_if_orphaned(self, attempt_id: str) -> bool:
        """Fail a PENDING attempt whose subscription was deleted or disabled.

        Returns:
            True if the attempt was abandoned.
        """
        now = self._clock()
        async with self._db.session() as session:
            result = await session.execute(
                _transition(attempt_id, DeliveryStatus.PENDING, DeliveryStatus.FAILED_PERMANENT)
                .where(not_(_active_subscription_exists()))
                .values(
                    completed_at=now,
                    error=ABANDONED_ERROR,
                    error_code=PermanentDeliveryError.code,
                )
            )
            return _rowcount(result) == 1

    @storage_retry
    async def mark_succeeded(
        self,
        attempt_id: str,
        *,
        response_status: int | None,
        response_body: str | None = None,
        duration_ms: int | None = None,
    ) -> bool:
        """Move an IN_FLIGHT attempt to SUCCEEDED."""
        async with self._db.session() as session:
            result = await session.execute(
                _transition(attempt_id, DeliveryStatus.IN_FLIGHT, DeliveryStatus.SUCCEEDED)
                .values(
                    completed_at=self._clock(),
                    response_status=response_status,
                    response_body=response_body,
                    duration_ms=duration_ms,
                )
            )
            return _rowcount(result) == 1

    @storage_retry
    async def schedule_retry(
        self,
        attempt_id: str,
        *,
        next_retry_at: datetime,
        error: str,
        error_code: str,
        response_status: int | None = None,
        response_body: str | None = None,
        duration_ms: int | None = None,
    ) -> DeliveryAttempt | None:
        """Close an IN_FLIGHT attempt as RETRY_SCHEDULED and create the next try.

        The next attempt is created PENDING with ``scheduled_at`` set to
        ``next_retry_at``, in the same transaction. Nothing happens if the
        attempt is no longer IN_FLIGHT or its subscription is gone or
        inactive.

        Returns:
            The new PENDING attempt, or None if no retry was scheduled.
        """
        now = self._clock()
        async with self._db.session() as session:
            result = await session.execute(
                _transition(attempt_id, DeliveryStatus.IN_FLIGHT, DeliveryStatus.RETRY_SCHEDULED)
                .where(_active_subscription_exists())
                .values(
                    completed_at=now,
                    next_retry_at=next_retry_at,
                    error=error,
                    error_code=error_code,
                    response_status=response_status,
                    response_body=response_body,
                    duration_ms=duration_ms,
                )
            )
            if _rowcount(result) != 1:
                return None

            current = await session.get(DeliveryAttemptRow, attempt_id)
            assert current is not None
            next_attempt = DeliveryAttempt(
                id=generate_id("dlv"),
                event_id=current.event_id,
                subscription_id=current.subscription_id,
                event_type=current.event_type,
                try_number=current.try_number + 1,
                status=DeliveryStatus.PENDING,
                scheduled_at=next_retry_at,
                created_at=now,
            )
            session.add(_to_row(next_attempt))

        return next_attempt

    @storage_retry
    async def mark_failed(
        self,
        attempt_id: str,
        *,
        error: str,
        error_code: str,
        response_status: int | None = None,
        response_body: str | None = None,
        duration_ms: int | None = None,
    ) -> bool:
        """Move an IN_FLIGHT attempt to FAILED_PERMANENT."""
        async with self._db.session() as session:
            result = await session.execute(
                _transition(attempt_id, DeliveryStatus.IN_FLIGHT, DeliveryStatus.FAILED_PERMANENT)
                .values(
                    completed_at=self._clock(),
                    error=error,
                    error_code=error_code,
                    response_status=response_status,
                    response_body=response_body,
                    duration_ms=duration_ms,
                )
            )
            return _rowcount(result) == 1

    @storage_retry
    async def due_attempt_ids(self, limit: int = 100) -> list[str]:
        """IDs of PENDING attempts whose ``scheduled_at`` has passed, oldest first."""
        stmt = (
            select(DeliveryAttemptRow.id)
            .where(
                DeliveryAttemptRow.status == PENDING,
                DeliveryAttemptRow.scheduled_at <= self._clock(),
            )
            .order_by(DeliveryAttemptRow.scheduled_at, DeliveryAttemptRow.id)
            .limit(limit)
        )
        async with self._db.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    @storage_retry
    async def stuck_attempt_ids(self, older_than: datetime, limit: int = 100) -> list[str]:
        """IDs of IN_FLIGHT attempts claimed before ``older_than``."""
        stmt = (
            select(DeliveryAttemptRow.id)
            .where(
                DeliveryAttemptRow.status == IN_FLIGHT,
                DeliveryAttemptRow.attempted_at < older_than,
            )
            .order_by(DeliveryAttemptRow.attempted_at, DeliveryAttemptRow.id)
            .limit(limit)
        )
        async with self._db.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    @storage_retry
    async def history(
        self,
        *,
        subscription_id: str | None = None,
        event_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """Delivery attempts, oldest first, optionally filtered.

        Args:
            subscription_id: Only attempts for this subscription.
            event_id: Only attempts for this event.
            status: Only attempts in this status.
            limit: Maximum attempts to return.
            offset: Attempts to skip.
        """
        conditions = []
        if subscription_id is not None:
            conditions.append(DeliveryAttemptRow.subscription_id == subscription_id)
        if event_id is not None:
            conditions.append(DeliveryAttemptRow.event_id == event_id)
        if status is not None:
            conditions.append(DeliveryAttemptRow.status == DeliveryStatus(status).value)

        stmt = select(DeliveryAttemptRow)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = (
            stmt.order_by(
                DeliveryAttemptRow.created_at,
                DeliveryAttemptRow.event_id,
                DeliveryAttemptRow.subscription_id,
                DeliveryAttemptRow.try_number,
            )
            .limit(limit)
            .offset(offset)
        )

        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_attempt(row) for row in rows]

    async def summaries(
        self,
        *,
        subscription_id: str | None = None,
        event_id: str | None = None,
        limit: int = 1000,
    ) -> list[DeliverySummary]:
        """Per (event, subscription) summaries: attempt count, last status, last error."""
        attempts = await self.history(
            subscription_id=subscription_id,
            event_id=event_id,
            limit=limit,
        )
        chains: dict[tuple[str, str], list[DeliveryAttempt]] = {}
        for attempt in attempts:
            chains.setdefault((attempt.event_id, attempt.subscription_id), []).append(attempt)
        return [DeliverySummary.from_attempts(chain) for chain in chains.values()]
