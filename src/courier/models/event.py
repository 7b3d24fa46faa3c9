"""Domain events and their wire representation.

An Event is an immutable fact raised by a domain service (member,
contribution, payment, benefit) after its change is committed. Courier
serializes it once into the request body that every subscriber receives:

    {
        "eventId": "evt_...",
        "eventType": "PAYMENT_SUCCESS",
        "occurredAt": "2026-10-19T12:00:00Z",
        "data": {...}
    }

Delivery is at-least-once. Receivers must treat ``eventId`` as the
de-duplication key: the same event may arrive more than once, always with
the same ``eventId`` and byte-identical body.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from courier.exceptions import ValidationError

from .base import generate_id, utcnow


class EventType(str, Enum):
    """Event types a subscription can listen to."""

    MEMBER_CREATED = "MEMBER_CREATED"
    MEMBER_UPDATED = "MEMBER_UPDATED"
    MEMBER_DELETED = "MEMBER_DELETED"
    CONTRIBUTION_CREATED = "CONTRIBUTION_CREATED"
    CONTRIBUTION_UPDATED = "CONTRIBUTION_UPDATED"
    CONTRIBUTION_COMPLETED = "CONTRIBUTION_COMPLETED"
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    BENEFIT_CREATED = "BENEFIT_CREATED"
    BENEFIT_APPROVED = "BENEFIT_APPROVED"
    BENEFIT_REJECTED = "BENEFIT_REJECTED"
    BENEFIT_PAID = "BENEFIT_PAID"
    SYSTEM_ALERT = "SYSTEM_ALERT"
    FRAUD_DETECTED = "FRAUD_DETECTED"


ALL_EVENT_TYPES: list[EventType] = list(EventType)


class Event(BaseModel):
    """An immutable domain event.

    Attributes:
        id: Globally unique event ID; the receiver's de-duplication key.
        event_type: What happened.
        occurred_at: When it happened (UTC).
        data: Event-specific payload.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("evt"))
    event_type: EventType = Field(description="Event type")
    occurred_at: AwareDatetime = Field(
        default_factory=utcnow,
        description="When the event occurred",
    )
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific payload")

    def to_payload(self) -> WebhookPayload:
        """Build the wire payload for this event."""
        return WebhookPayload(
            event_id=self.id,
            event_type=self.event_type,
            occurred_at=self.occurred_at,
            data=self.data,
        )

    def serialize(self) -> str:
        """Serialize the request body exactly as it will be sent and signed.

        Raises:
            ValidationError: If ``data`` holds values that cannot be encoded as JSON.
        """
        try:
            return self.to_payload().model_dump_json(by_alias=True)
        except ValueError as e:
            # PydanticSerializationError is a ValueError
            raise ValidationError("data", f"not JSON serializable: {e}") from e


class WebhookPayload(BaseModel):
    """JSON body POSTed to subscribers (camelCase on the wire)."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    event_id: str
    event_type: EventType
    occurred_at: datetime
    data: dict[str, Any] = Field(default_factory=dict)
