"""Tests for Courier domain models."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from courier.exceptions import ValidationError as CourierValidationError

from courier.models import (
    ALL_EVENT_TYPES,
    DeliveryAttempt,
    DeliveryStatus,
    DeliverySummary,
    Event,
    EventType,
    RegisteredSubscription,
    Subscription,
    generate_id,
)

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


def _attempt(try_number: int, status: DeliveryStatus, **kwargs) -> DeliveryAttempt:
    return DeliveryAttempt(
        id=f"dlv_{try_number}",
        event_id="evt_1",
        subscription_id="sub_1",
        event_type=EventType.PAYMENT_SUCCESS,
        try_number=try_number,
        status=status,
        scheduled_at=NOW + timedelta(seconds=try_number),
        created_at=NOW,
        **kwargs,
    )


class TestGenerateId:
    """Tests for generate_id."""

    def test_prefix(self):
        """IDs should carry their prefix."""
        assert generate_id("sub").startswith("sub_")
        assert generate_id("evt").startswith("evt_")

    def test_unique(self):
        """IDs should not repeat."""
        assert len({generate_id("dlv") for _ in range(1000)}) == 1000

    def test_sorts_in_creation_order(self):
        """IDs generated one after another should sort in that order."""
        ids = [generate_id("sub") for _ in range(200)]
        assert sorted(ids) == ids

    def test_fixed_length(self):
        """The suffix should always be 32 hex digits."""
        suffix = generate_id("evt").removeprefix("evt_")
        assert len(suffix) == 32
        int(suffix, 16)


class TestEventType:
    """Tests for EventType."""

    def test_all_event_types(self):
        """Should enumerate the fifteen domain event types."""
        assert len(ALL_EVENT_TYPES) == 15
        assert EventType.PAYMENT_SUCCESS in ALL_EVENT_TYPES
        assert EventType.FRAUD_DETECTED in ALL_EVENT_TYPES

    def test_from_string(self):
        """Should parse from its wire name."""
        assert EventType("BENEFIT_APPROVED") is EventType.BENEFIT_APPROVED

    def test_unknown_rejected(self):
        """Unknown names should raise ValueError."""
        with pytest.raises(ValueError):
            EventType("PAYMENT_REFUNDED")


class TestEvent:
    """Tests for Event."""

    def test_defaults(self):
        """Should generate an id and timestamp."""
        event = Event(event_type=EventType.MEMBER_CREATED)
        assert event.id.startswith("evt_")
        assert event.occurred_at.tzinfo is not None
        assert event.data == {}

    def test_frozen(self):
        """Events should be immutable."""
        event = Event(event_type=EventType.MEMBER_CREATED)
        with pytest.raises(ValidationError):
            event.data = {"changed": True}

    def test_naive_occurred_at_rejected(self):
        """occurred_at must be timezone-aware."""
        with pytest.raises(ValidationError):
            Event(event_type=EventType.MEMBER_CREATED, occurred_at=datetime(2026, 1, 1))

    def test_serialize_wire_shape(self):
        """Serialized body should use camelCase keys."""
        event = Event(
            id="evt_abc",
            event_type=EventType.PAYMENT_SUCCESS,
            occurred_at=NOW,
            data={"paymentId": "pay_1", "amount": "250.00"},
        )
        payload = json.loads(event.serialize())
        assert payload == {
            "eventId": "evt_abc",
            "eventType": "PAYMENT_SUCCESS",
            "occurredAt": "2026-03-01T09:30:00Z",
            "data": {"paymentId": "pay_1", "amount": "250.00"},
        }

    def test_serialize_is_stable(self):
        """Serializing twice should give identical bytes."""
        event = Event(event_type=EventType.PAYMENT_SUCCESS, data={"b": 1, "a": [1, 2]})
        assert event.serialize() == event.serialize()

    def test_serialize_rejects_unencodable_data(self):
        """Values JSON cannot encode should raise a validation error naming data."""
        event = Event(event_type=EventType.MEMBER_UPDATED, data={"member": object()})
        with pytest.raises(CourierValidationError) as exc_info:
            event.serialize()
        assert exc_info.value.field == "data"


class TestSubscription:
    """Tests for Subscription models."""

    def test_requires_event_types(self):
        """A subscription needs at least one event type."""
        with pytest.raises(ValidationError):
            Subscription(
                id="sub_1",
                target_url="https://example.com/hook",
                event_types=[],
                created_at=NOW,
                updated_at=NOW,
            )

    def test_secret_only_on_registered(self):
        """Only RegisteredSubscription exposes the secret."""
        assert "secret" not in Subscription.model_fields
        assert "secret" in RegisteredSubscription.model_fields


class TestDeliveryStatus:
    """Tests for the attempt state machine."""

    def test_terminal_statuses(self):
        """SUCCEEDED and FAILED_PERMANENT are terminal."""
        assert DeliveryStatus.SUCCEEDED.is_terminal
        assert DeliveryStatus.FAILED_PERMANENT.is_terminal
        assert not DeliveryStatus.RETRY_SCHEDULED.is_terminal
        assert not DeliveryStatus.PENDING.is_terminal

    def test_allowed_transitions(self):
        """Only the documented transitions should be allowed."""
        assert DeliveryStatus.PENDING.can_transition_to(DeliveryStatus.IN_FLIGHT)
        assert DeliveryStatus.PENDING.can_transition_to(DeliveryStatus.FAILED_PERMANENT)
        assert not DeliveryStatus.PENDING.can_transition_to(DeliveryStatus.SUCCEEDED)
        assert DeliveryStatus.IN_FLIGHT.can_transition_to(DeliveryStatus.RETRY_SCHEDULED)
        assert not DeliveryStatus.SUCCEEDED.can_transition_to(DeliveryStatus.IN_FLIGHT)
        assert not DeliveryStatus.RETRY_SCHEDULED.can_transition_to(DeliveryStatus.PENDING)

    def test_try_number_starts_at_one(self):
        """try_number 0 should be rejected."""
        with pytest.raises(ValidationError):
            _attempt(0, DeliveryStatus.PENDING)


class TestDeliverySummary:
    """Tests for DeliverySummary.from_attempts."""

    def test_summarizes_chain(self):
        """Should report count, last status and last error."""
        attempts = [
            _attempt(2, DeliveryStatus.FAILED_PERMANENT, response_status=500, error="HTTP 500"),
            _attempt(1, DeliveryStatus.RETRY_SCHEDULED, response_status=503, error="HTTP 503"),
        ]
        summary = DeliverySummary.from_attempts(attempts)
        assert summary.attempt_count == 2
        assert summary.last_status == DeliveryStatus.FAILED_PERMANENT
        assert summary.last_response_status == 500
        assert summary.last_error == "HTTP 500"
        assert summary.settled is True

    def test_last_error_from_earlier_try(self):
        """A pending retry should still surface the previous error."""
        attempts = [
            _attempt(1, DeliveryStatus.RETRY_SCHEDULED, error="Request timeout"),
            _attempt(2, DeliveryStatus.PENDING),
        ]
        summary = DeliverySummary.from_attempts(attempts)
        assert summary.last_status == DeliveryStatus.PENDING
        assert summary.last_error == "Request timeout"
        assert summary.settled is False

    def test_empty_rejected(self):
        """An empty chain cannot be summarized."""
        with pytest.raises(ValueError):
            DeliverySummary.from_attempts([])
