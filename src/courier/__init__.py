"""Courier: outbound webhook delivery.

Pushes domain events (payments, contributions, members, benefits) to
externally registered HTTP endpoints with HMAC-SHA256 signatures,
exponential-backoff retries, delivery history, and automatic suspension of
receivers that keep failing.

Quick Start:
    from courier import CourierService, EventType

    async with CourierService.create() as courier:
        sub = await courier.register(
            "https://partner.example.com/hooks",
            [EventType.PAYMENT_SUCCESS],
        )

        # After the domain change is committed
        await courier.publish(EventType.PAYMENT_SUCCESS, {"paymentId": "pay_123"})

        # What happened to it
        summaries = await courier.delivery_summaries(subscription_id=sub.id)

Delivery Guarantees:
    - At-least-once: receivers de-duplicate on ``eventId``
    - Every try of an event carries a byte-identical, identically signed body
    - Attempt states: pending, in_flight, succeeded, retry_scheduled,
      failed_permanent
"""

__version__ = "0.1.0"

# Configuration
from .config import RetryPolicy, Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    CourierError,
    DeliveryError,
    NotFoundError,
    PermanentDeliveryError,
    StorageError,
    TransientDeliveryError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttempt,
    DeliveryStatus,
    DeliverySummary,
    Event,
    EventType,
    RegisteredSubscription,
    Subscription,
    WebhookPayload,
)

# Service
from .service import CourierService

# Signing
from .signing import sign, verify

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "RetryPolicy",
    "settings",
    # Exceptions
    "CourierError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConfigurationError",
    "DeliveryError",
    "TransientDeliveryError",
    "PermanentDeliveryError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "Event",
    "EventType",
    "WebhookPayload",
    "Subscription",
    "RegisteredSubscription",
    "DeliveryAttempt",
    "DeliveryStatus",
    "DeliverySummary",
    # Service
    "CourierService",
    # Signing
    "sign",
    "verify",
]
