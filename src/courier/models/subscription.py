"""Webhook subscription models.

A subscription is one external receiver: a target URL, the event types it
wants, and the secret used to sign every request sent to it. The secret is
returned once, by registration, and never by later reads.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from courier.config import MAX_TIMEOUT_SECONDS

from .event import EventType


class Subscription(BaseModel):
    """A registered webhook receiver, as seen by administrators.

    Attributes:
        id: Unique identifier (``sub_`` prefix).
        target_url: Absolute http(s) URL that receives POSTs.
        event_types: Event types this subscription receives (never empty).
        active: Whether new deliveries are created for this subscription.
        consecutive_failures: Permanently failed deliveries since the last success.
        disabled_reason: Why the subscription is inactive, if it is.
        description: Optional human-readable description.
        created_by: Who registered the subscription.
        max_tries: Per-subscription override of the retry policy's max tries.
        timeout_seconds: Per-subscription override of the HTTP timeout.
        created_at: When the subscription was registered.
        updated_at: When the subscription was last modified.
        last_delivered_at: When a delivery last succeeded.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    target_url: str
    event_types: list[EventType] = Field(min_length=1)
    active: bool = True
    consecutive_failures: int = Field(default=0, ge=0)
    disabled_reason: str | None = None
    description: str | None = None
    created_by: str | None = None
    max_tries: int | None = Field(default=None, ge=1, le=20)
    timeout_seconds: float | None = Field(default=None, gt=0.0, le=MAX_TIMEOUT_SECONDS)
    created_at: datetime
    updated_at: datetime
    last_delivered_at: datetime | None = None


class RegisteredSubscription(Subscription):
    """Result of registration: the only model that carries the signing secret."""

    secret: str = Field(description="HMAC-SHA256 signing secret, shown once")
