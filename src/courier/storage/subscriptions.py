"""Subscription registry.

Every method runs in its own transaction. The consecutive-failure counter is
only ever changed by single UPDATE statements, so concurrent deliveries to
the same subscription from different events cannot lose an increment.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable
from typing import Any, cast

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.engine import CursorResult

from courier.config import MAX_TIMEOUT_SECONDS
from courier.exceptions import NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import (
    Clock,
    EventType,
    RegisteredSubscription,
    Subscription,
    generate_id,
    utcnow,
)

from .database import Database
from .retry import storage_retry
from .tables import SubscriptionEventTypeRow, SubscriptionRow

logger = get_logger(__name__)

_URL_ADAPTER: TypeAdapter[AnyHttpUrl] = TypeAdapter(AnyHttpUrl)

MAX_URL_LENGTH = 2048
MAX_DESCRIPTION_LENGTH = 500
MAX_CREATED_BY_LENGTH = 100


def _rowcount(result: Any) -> int:
    return cast(CursorResult[Any], result).rowcount


def _to_subscription(row: SubscriptionRow) -> Subscription:
    return Subscription(
        id=row.id,
        target_url=row.target_url,
        event_types=sorted(
            (EventType(et.event_type) for et in row.event_types), key=lambda t: t.value
        ),
        active=row.active,
        consecutive_failures=row.consecutive_failures,
        disabled_reason=row.disabled_reason,
        description=row.description,
        created_by=row.created_by,
        max_tries=row.max_tries,
        timeout_seconds=row.timeout_seconds,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_delivered_at=row.last_delivered_at,
    )


class SubscriptionRegistry:
    """CRUD over webhook subscriptions plus the failure counter.

    Example:
        ```python
        registry = SubscriptionRegistry(database)
        sub = await registry.register(
            "https://partner.example.com/hooks",
            [EventType.PAYMENT_SUCCESS],
        )
        print(sub.secret)  # shown once
        ```
    """

    def __init__(
        self,
        database: Database,
        *,
        require_https: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        self._db = database
        self._require_https = require_https
        self._clock = clock

    def _validate_url(self, target_url: str) -> str:
        if not isinstance(target_url, str) or not target_url.strip():
            raise ValidationError("target_url", "must be a non-empty URL")
        url = target_url.strip()
        if len(url) > MAX_URL_LENGTH:
            raise ValidationError("target_url", f"must be at most {MAX_URL_LENGTH} characters")
        try:
            parsed = _URL_ADAPTER.validate_python(url)
        except PydanticValidationError as e:
            raise ValidationError("target_url", f"not a valid absolute http(s) URL: {url}") from e
        if self._require_https and parsed.scheme != "https":
            raise ValidationError("target_url", "must use https")
        return url

    @staticmethod
    def _validate_event_types(
        event_types: Iterable[EventType | str] | EventType | str,
    ) -> list[EventType]:
        if isinstance(event_types, str):
            event_types = [event_types]
        resolved: set[EventType] = set()
        for value in event_types:
            try:
                resolved.add(EventType(value))
            except ValueError as e:
                raise ValidationError("event_types", f"unknown event type: {value}") from e
        if not resolved:
            raise ValidationError("event_types", "at least one event type is required")
        return sorted(resolved, key=lambda t: t.value)

    @storage_retry
    async def register(
        self,
        target_url: str,
        event_types: Iterable[EventType | str],
        *,
        description: str | None = None,
        created_by: str | None = None,
        max_tries: int | None = None,
        timeout_seconds: float | None = None,
    ) -> RegisteredSubscription:
        """Register a new subscription.

        Args:
            target_url: Absolute http(s) URL that will receive POSTs.
            event_types: Event types to subscribe to (at least one).
            description: Optional human-readable description.
            created_by: Who registered the subscription.
            max_tries: Override of the configured max tries.
            timeout_seconds: Override of the configured HTTP timeout.

        Returns:
            The new subscription, including its signing secret.

        Raises:
            ValidationError: If any input is malformed.
        """
        url = self._validate_url(target_url)
        types = self._validate_event_types(event_types)
        if max_tries is not None and not 1 <= max_tries <= 20:
            raise ValidationError("max_tries", "must be between 1 and 20")
        if timeout_seconds is not None and not 0 < timeout_seconds <= MAX_TIMEOUT_SECONDS:
            raise ValidationError(
                "timeout_seconds", f"must be greater than 0 and at most {MAX_TIMEOUT_SECONDS:g}"
            )
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                "description", f"must be at most {MAX_DESCRIPTION_LENGTH} characters"
            )
        if created_by is not None and len(created_by) > MAX_CREATED_BY_LENGTH:
            raise ValidationError(
                "created_by", f"must be at most {MAX_CREATED_BY_LENGTH} characters"
            )

        now = self._clock()
        subscription = RegisteredSubscription(
            id=generate_id("sub"),
            target_url=url,
            secret=secrets.token_hex(32),
            event_types=types,
            description=description,
            created_by=created_by,
            max_tries=max_tries,
            timeout_seconds=timeout_seconds,
            created_at=now,
            updated_at=now,
        )

        async with self._db.session() as session:
            session.add(
                SubscriptionRow(
                    id=subscription.id,
                    target_url=subscription.target_url,
                    secret=subscription.secret,
                    active=True,
                    consecutive_failures=0,
                    description=description,
                    created_by=created_by,
                    max_tries=max_tries,
                    timeout_seconds=timeout_seconds,
                    created_at=now,
                    updated_at=now,
                    event_types=[SubscriptionEventTypeRow(event_type=t.value) for t in types],
                )
            )

        logger.info(
            "Subscription registered",
            subscription_id=subscription.id,
            event_types=[t.value for t in types],
        )
        return subscription

    @storage_retry
    async def get(self, subscription_id: str) -> Subscription:
        """Get a subscription by ID.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        async with self._db.session() as session:
            row = await session.get(SubscriptionRow, subscription_id)
            if row is None:
                raise NotFoundError("subscription", subscription_id)
            return _to_subscription(row)

    @storage_retry
    async def list_subscriptions(
        self,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Subscription]:
        """List subscriptions, oldest first."""
        stmt = select(SubscriptionRow).order_by(SubscriptionRow.created_at, SubscriptionRow.id)
        if active_only:
            stmt = stmt.where(SubscriptionRow.active.is_(True))
        stmt = stmt.limit(limit).offset(offset)

        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_subscription(row) for row in rows]

    @storage_retry
    async def find_active_subscribers_for(self, event_type: EventType) -> list[Subscription]:
        """Find active subscriptions listening to an event type."""
        stmt = (
            select(SubscriptionRow)
            .join(
                SubscriptionEventTypeRow,
                SubscriptionEventTypeRow.subscription_id == SubscriptionRow.id,
            )
            .where(
                SubscriptionRow.active.is_(True),
                SubscriptionEventTypeRow.event_type == EventType(event_type).value,
            )
            .order_by(SubscriptionRow.created_at, SubscriptionRow.id)
        )

        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_subscription(row) for row in rows]

    @storage_retry
    async def disable(self, subscription_id: str, reason: str | None = None) -> Subscription:
        """Stop creating deliveries for a subscription.

        Disabling an already disabled subscription is a no-op and keeps the
        original reason.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        async with self._db.session() as session:
            result = await session.execute(
                update(SubscriptionRow)
                .where(
                    SubscriptionRow.id == subscription_id,
                    SubscriptionRow.active.is_(True),
                )
                .values(active=False, disabled_reason=reason, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            row = await session.get(SubscriptionRow, subscription_id)
            if row is None:
                raise NotFoundError("subscription", subscription_id)
            changed = _rowcount(result) == 1
            subscription = _to_subscription(row)

        if changed:
            logger.warning(
                "Subscription disabled",
                subscription_id=subscription_id,
                reason=reason,
            )
        return subscription

    @storage_retry
    async def enable(self, subscription_id: str) -> Subscription:
        """Re-activate a subscription and reset its failure counter.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        async with self._db.session() as session:
            result = await session.execute(
                update(SubscriptionRow)
                .where(SubscriptionRow.id == subscription_id)
                .values(
                    active=True,
                    consecutive_failures=0,
                    disabled_reason=None,
                    updated_at=self._clock(),
                )
                .execution_options(synchronize_session=False)
            )
            if _rowcount(result) == 0:
                raise NotFoundError("subscription", subscription_id)
            row = await session.get(SubscriptionRow, subscription_id)
            assert row is not None
            subscription = _to_subscription(row)

        logger.info("Subscription enabled", subscription_id=subscription_id)
        return subscription

    @storage_retry
    async def delete(self, subscription_id: str) -> None:
        """Delete a subscription.

        Delivery history is kept. Pending attempts are abandoned when they
        come up for delivery; an attempt already in flight finishes.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        async with self._db.session() as session:
            await session.execute(
                delete(SubscriptionEventTypeRow)
                .where(SubscriptionEventTypeRow.subscription_id == subscription_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(SubscriptionRow)
                .where(SubscriptionRow.id == subscription_id)
                .execution_options(synchronize_session=False)
            )
            if _rowcount(result) == 0:
                raise NotFoundError("subscription", subscription_id)

        logger.info("Subscription deleted", subscription_id=subscription_id)

    @storage_retry
    async def record_success(self, subscription_id: str) -> None:
        """Reset the failure counter after a successful delivery."""
        now = self._clock()
        async with self._db.session() as session:
            await session.execute(
                update(SubscriptionRow)
                .where(SubscriptionRow.id == subscription_id)
                .values(consecutive_failures=0, last_delivered_at=now)
                .execution_options(synchronize_session=False)
            )

    @storage_retry
    async def record_failure(self, subscription_id: str) -> int | None:
        """Atomically increment the failure counter.

        Returns:
            The new counter value, or None if the subscription no longer exists.
        """
        async with self._db.session() as session:
            result = await session.execute(
                update(SubscriptionRow)
                .where(SubscriptionRow.id == subscription_id)
                .values(consecutive_failures=SubscriptionRow.consecutive_failures + 1)
                .execution_options(synchronize_session=False)
            )
            if _rowcount(result) == 0:
                return None
            count = await session.scalar(
                select(SubscriptionRow.consecutive_failures).where(
                    SubscriptionRow.id == subscription_id
                )
            )
            return int(count) if count is not None else None
