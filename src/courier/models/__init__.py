"""Domain models for Courier.

Models:
    - Event / EventType / WebhookPayload: what gets delivered
    - Subscription / RegisteredSubscription: who receives it
    - DeliveryAttempt / DeliveryStatus / DeliverySummary: delivery history
"""

from .base import Clock, generate_id, utcnow
from .delivery import ALLOWED_TRANSITIONS, DeliveryAttempt, DeliveryStatus, DeliverySummary
from .event import ALL_EVENT_TYPES, Event, EventType, WebhookPayload
from .subscription import RegisteredSubscription, Subscription

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ALL_EVENT_TYPES",
    "Clock",
    "DeliveryAttempt",
    "DeliveryStatus",
    "DeliverySummary",
    "Event",
    "EventType",
    "RegisteredSubscription",
    "Subscription",
    "WebhookPayload",
    "generate_id",
    "utcnow",
]
