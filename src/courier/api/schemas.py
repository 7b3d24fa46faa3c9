"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from courier.models import DeliveryAttempt, DeliverySummary, Subscription


class CreateSubscriptionRequest(BaseModel):
    """Request body for registering a subscription.

    Event types are validated by the registry so that unknown names are
    reported as a 400 with the offending value.

    Attributes:
        target_url: Absolute http(s) URL that receives POSTs.
        event_types: Event type names to subscribe to.
        description: Optional human-readable description.
        created_by: Who registered the subscription.
        max_tries: Override of the configured max tries.
        timeout_seconds: Override of the configured HTTP timeout.
    """

    model_config = ConfigDict(extra="forbid")

    target_url: str = Field(min_length=1, description="Receiver URL")
    event_types: list[str] = Field(min_length=1, description="Event types to receive")
    description: str | None = Field(default=None, description="Optional description")
    created_by: str | None = Field(default=None, description="Who registered it")
    max_tries: int | None = Field(default=None, description="Max delivery tries override")
    timeout_seconds: float | None = Field(default=None, description="HTTP timeout override")


class DisableSubscriptionRequest(BaseModel):
    """Optional body for disabling a subscription."""

    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(default=None, max_length=255, description="Why it is disabled")


class SubscriptionListResponse(BaseModel):
    """Response for listing subscriptions."""

    subscriptions: list[Subscription]
    count: int


class PublishEventRequest(BaseModel):
    """Request body for publishing an event.

    Attributes:
        event_type: Event type name.
        data: Event-specific payload.
        occurred_at: When the event happened (defaults to now).
    """

    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(min_length=1, description="Event type")
    data: dict[str, Any] = Field(default_factory=dict, description="Event payload")
    occurred_at: AwareDatetime | None = Field(default=None, description="When it happened")


class PublishEventResponse(BaseModel):
    """Response for publishing an event."""

    event_id: str
    attempt_ids: list[str]
    subscriber_count: int


class DeliveryHistoryResponse(BaseModel):
    """Delivery attempts plus per (event, subscription) summaries."""

    attempts: list[DeliveryAttempt]
    summaries: list[DeliverySummary]
    count: int


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status.
        version: API version.
        database_connected: Whether the database answers queries.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    database_connected: bool
