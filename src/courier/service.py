"""Core Courier service layer.

CourierService wires the registry, delivery store, worker pool, worker and
retry scheduler together from Settings and exposes the operations domain
services and administrators use.

Example:
    ```python
    from courier import CourierService, EventType

    async with CourierService.create() as courier:
        sub = await courier.register(
            "https://partner.example.com/hooks",
            [EventType.PAYMENT_SUCCESS],
        )
        print(f"Signing secret (shown once): {sub.secret}")

        # After the payment is committed:
        await courier.publish(EventType.PAYMENT_SUCCESS, {"paymentId": "pay_123"})
    ```
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx

from courier.config import Settings
from courier.logging import get_logger
from courier.models import (
    Clock,
    DeliveryAttempt,
    DeliveryStatus,
    DeliverySummary,
    Event,
    EventType,
    RegisteredSubscription,
    Subscription,
    utcnow,
)
from courier.storage import Database, DeliveryStore, SubscriptionRegistry
from courier.webhooks import (
    DeliveryPolicy,
    DeliveryWorker,
    EventDispatcher,
    RetryScheduler,
    WebhookSender,
    WorkerPool,
)

logger = get_logger(__name__)


@dataclass
class CourierService:
    """High-level webhook delivery service.

    Attributes:
        settings: Configuration settings.
        database: Database holding subscriptions and delivery history.
        sender: HTTP transport used for deliveries.
        clock: Time source.
    """

    settings: Settings
    database: Database
    sender: WebhookSender
    clock: Clock = field(default=utcnow)

    registry: SubscriptionRegistry = field(init=False, repr=False)
    store: DeliveryStore = field(init=False, repr=False)
    pool: WorkerPool = field(init=False, repr=False)
    worker: DeliveryWorker = field(init=False, repr=False)
    dispatcher: EventDispatcher = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the delivery components from settings."""
        s = self.settings
        self.registry = SubscriptionRegistry(
            self.database, require_https=s.require_https, clock=self.clock
        )
        self.store = DeliveryStore(self.database, clock=self.clock)
        self.pool = WorkerPool(max_concurrent=s.max_concurrent_deliveries)
        self.worker = DeliveryWorker(
            self.store,
            self.registry,
            self.sender,
            DeliveryPolicy(s.retry),
            disable_threshold=s.disable_threshold,
            default_timeout=s.delivery_timeout_seconds,
            clock=self.clock,
        )
        self.dispatcher = EventDispatcher(self.registry, self.store, self.pool, self.worker)
        self.scheduler = RetryScheduler(
            self.store,
            self.pool,
            self.worker,
            poll_interval=s.scheduler_poll_interval_seconds,
            batch_size=s.scheduler_batch_size,
            stuck_after=timedelta(minutes=s.stuck_attempt_minutes),
            clock=self.clock,
        )

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = utcnow,
    ) -> CourierService:
        """Create a CourierService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            transport: Optional httpx transport for deliveries.
            clock: Time source.

        Returns:
            Configured CourierService instance.
        """
        if settings is None:
            settings = Settings()

        return cls(
            settings=settings,
            database=Database(settings.database_url, echo=settings.database_echo),
            sender=WebhookSender(
                timeout_seconds=settings.delivery_timeout_seconds,
                user_agent=settings.user_agent,
                response_body_max_chars=settings.response_body_max_chars,
                transport=transport,
            ),
            clock=clock,
        )

    async def initialize(self) -> None:
        """Create the schema, open the HTTP client and start the scheduler."""
        await self.database.initialize()
        await self.sender.open()
        if self.settings.scheduler_enabled:
            await self.scheduler.start()
        logger.info("Courier service initialized")

    async def close(self, grace_seconds: float = 10.0) -> None:
        """Stop the scheduler, let running deliveries finish, release resources."""
        await self.scheduler.stop()
        await self.pool.close(grace_seconds=grace_seconds)
        await self.sender.close()
        await self.database.close()
        logger.info("Courier service closed")

    async def __aenter__(self) -> CourierService:
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # Subscriptions

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
        """Register a subscription. The returned secret is never shown again."""
        return await self.registry.register(
            target_url,
            event_types,
            description=description,
            created_by=created_by,
            max_tries=max_tries,
            timeout_seconds=timeout_seconds,
        )

    async def get_subscription(self, subscription_id: str) -> Subscription:
        return await self.registry.get(subscription_id)

    async def list_subscriptions(
        self,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Subscription]:
        return await self.registry.list_subscriptions(
            active_only=active_only, limit=limit, offset=offset
        )

    async def enable(self, subscription_id: str) -> Subscription:
        return await self.registry.enable(subscription_id)

    async def disable(self, subscription_id: str, reason: str | None = None) -> Subscription:
        return await self.registry.disable(subscription_id, reason=reason)

    async def delete(self, subscription_id: str) -> None:
        await self.registry.delete(subscription_id)

    # Publishing

    async def publish(
        self,
        event_type: EventType | str,
        data: dict[str, Any] | None = None,
        *,
        occurred_at: datetime | None = None,
    ) -> list[str]:
        """Publish an event to its subscribers.

        Call after the domain change is committed. Returns the created
        attempt IDs without waiting for delivery.

        Raises:
            ValidationError: If the event type is unknown or the data cannot be
                serialized.
            StorageError: If the attempts could not be stored.
        """
        return await self.dispatcher.publish_event(event_type, data, occurred_at=occurred_at)

    async def publish_event(self, event: Event) -> list[str]:
        """Publish an already built Event."""
        return await self.dispatcher.publish(event)

    # Delivery history

    async def delivery_history(
        self,
        *,
        subscription_id: str | None = None,
        event_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """Delivery attempts, oldest first."""
        return await self.store.history(
            subscription_id=subscription_id,
            event_id=event_id,
            status=status,
            limit=limit,
            offset=offset,
        )

    async def delivery_summaries(
        self,
        *,
        subscription_id: str | None = None,
        event_id: str | None = None,
    ) -> list[DeliverySummary]:
        """Per (event, subscription) attempt count, last status and last error."""
        return await self.store.summaries(subscription_id=subscription_id, event_id=event_id)

    async def run_due_retries(self) -> int:
        """Run one scheduler sweep now."""
        return await self.scheduler.run_once()

    async def drain(self) -> None:
        """Wait for every submitted delivery to finish."""
        await self.pool.drain()

    async def health_check(self) -> bool:
        return await self.database.health_check()
