"""Event dispatcher: fan an event out to its subscribers.

Publishing is fire-and-forget. ``publish`` returns once the attempts are
stored and submitted; their outcome is recorded later by the worker and
never reported back to the caller. Invalid input is rejected before
anything is stored, and storage failures while creating the attempts are
raised so the caller can publish again.
"""

from __future__ import annotations

from datetime import datetime
from functools import partial
from typing import Any

from courier.exceptions import ValidationError
from courier.logging import get_logger
from courier.models import Event, EventType
from courier.storage import DeliveryStore, SubscriptionRegistry

from .pool import WorkerPool
from .worker import DeliveryWorker

logger = get_logger(__name__)


class EventDispatcher:
    """Matches events to active subscriptions and starts their deliveries.

    Example:
        ```python
        dispatcher = EventDispatcher(registry, store, pool, worker)
        attempt_ids = await dispatcher.publish_event(
            EventType.PAYMENT_SUCCESS,
            {"paymentId": "pay_123", "amount": "250.00"},
        )
        ```
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        store: DeliveryStore,
        pool: WorkerPool,
        worker: DeliveryWorker,
    ) -> None:
        self._registry = registry
        self._store = store
        self._pool = pool
        self._worker = worker

    async def publish(self, event: Event) -> list[str]:
        """Create and submit one delivery attempt per matching subscription.

        Args:
            event: The event, published after its domain change is committed.

        Returns:
            IDs of the created attempts (empty when nothing subscribes).

        Raises:
            ValidationError: If the event data cannot be serialized.
            StorageError: If the attempts could not be stored.
        """
        body = event.serialize()
        subscribers = await self._registry.find_active_subscribers_for(event.event_type)
        if not subscribers:
            logger.debug(
                "No subscribers for event",
                event_id=event.id,
                event_type=event.event_type.value,
            )
            return []

        attempts = await self._store.create_attempts(event, body, [s.id for s in subscribers])

        for attempt in attempts:
            self._pool.submit(attempt.id, partial(self._worker.process, attempt.id))

        logger.info(
            "Event published",
            event_id=event.id,
            event_type=event.event_type.value,
            subscribers=len(attempts),
        )
        return [attempt.id for attempt in attempts]

    async def publish_event(
        self,
        event_type: EventType | str,
        data: dict[str, Any] | None = None,
        *,
        occurred_at: datetime | None = None,
    ) -> list[str]:
        """Build an Event and publish it.

        Raises:
            ValidationError: If the event type is unknown or its data cannot be
                serialized.
        """
        return await self.publish(make_event(event_type, data, occurred_at=occurred_at))


def make_event(
    event_type: EventType | str,
    data: dict[str, Any] | None = None,
    *,
    occurred_at: datetime | None = None,
) -> Event:
    """Build an Event from loosely typed input.

    Raises:
        ValidationError: If the event type is unknown or ``occurred_at`` is naive.
    """
    try:
        resolved = EventType(event_type)
    except ValueError as e:
        raise ValidationError("event_type", f"unknown event type: {event_type}") from e

    if occurred_at is not None and occurred_at.tzinfo is None:
        raise ValidationError("occurred_at", "must be timezone-aware")

    event_fields: dict[str, Any] = {"event_type": resolved, "data": data or {}}
    if occurred_at is not None:
        event_fields["occurred_at"] = occurred_at
    return Event(**event_fields)
