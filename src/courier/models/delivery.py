"""Delivery attempt models.

One DeliveryAttempt row exists per (event, subscription, try number).
Per-row state machine:

    PENDING ──claim──> IN_FLIGHT ──2xx──────────────> SUCCEEDED
       │                   ├──failure, tries left───> RETRY_SCHEDULED
       │                   └──failure, last try─────> FAILED_PERMANENT
       └──subscription deleted or disabled──────────> FAILED_PERMANENT

RETRY_SCHEDULED closes its own row; the chain continues on a new PENDING
row with ``try_number + 1``, created in the same transaction.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .event import EventType


class DeliveryStatus(str, Enum):
    """Status of a single delivery attempt."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED_PERMANENT = "failed_permanent"

    @property
    def is_terminal(self) -> bool:
        """No further attempt row may follow this status for the pair."""
        return self in (DeliveryStatus.SUCCEEDED, DeliveryStatus.FAILED_PERMANENT)

    def can_transition_to(self, target: DeliveryStatus) -> bool:
        """Check whether ``self -> target`` is an allowed transition."""
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.IN_FLIGHT, DeliveryStatus.FAILED_PERMANENT}),
    DeliveryStatus.IN_FLIGHT: frozenset(
        {
            DeliveryStatus.SUCCEEDED,
            DeliveryStatus.RETRY_SCHEDULED,
            DeliveryStatus.FAILED_PERMANENT,
        }
    ),
    DeliveryStatus.SUCCEEDED: frozenset(),
    DeliveryStatus.RETRY_SCHEDULED: frozenset(),
    DeliveryStatus.FAILED_PERMANENT: frozenset(),
}


class DeliveryAttempt(BaseModel):
    """Record of one try to deliver one event to one subscription.

    Attributes:
        id: Unique identifier (``dlv_`` prefix).
        event_id: Event being delivered.
        subscription_id: Receiving subscription.
        event_type: Type of the event (denormalized for history queries).
        try_number: 1 for the first try, strictly increasing per pair.
        status: Current status.
        scheduled_at: Earliest time the attempt may run.
        attempted_at: When the HTTP call started.
        completed_at: When the attempt reached its final status.
        response_status: HTTP status returned by the receiver.
        response_body: Receiver response body (truncated).
        error: Error detail when the attempt did not succeed.
        error_code: Error taxonomy code when the attempt did not succeed.
        duration_ms: HTTP call duration.
        next_retry_at: When the follow-up try is scheduled.
        created_at: When the row was created.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    event_id: str
    subscription_id: str
    event_type: EventType
    try_number: int = Field(ge=1)
    status: DeliveryStatus = DeliveryStatus.PENDING
    scheduled_at: datetime
    attempted_at: datetime | None = None
    settled: bool = False
    completed_at: datetime | None = None
    response_status: int | None = None
    response_body: str | None = None
    error: str | None = None
    error_code: str | None = None
    duration_ms: int | None = None
    next_retry_at: datetime | None = None
    created_at: datetime


class DeliverySummary(BaseModel):
    """Delivery state of one (event, subscription) pair for administrators.

    ``settled`` is true once the last try SUCCEEDED or FAILED_PERMANENT.
    """

    model_config = ConfigDict(extra="forbid")

    event_id: str
    subscription_id: str
    event_type: EventType
    attempt_count: int = Field(ge=1)
    last_status: DeliveryStatus
    last_response_status: int | None = None
    last_error: str | None = None
    last_attempted_at: datetime | None = None
    settled: bool = False

    @classmethod
    def from_attempts(cls, attempts: list[DeliveryAttempt]) -> DeliverySummary:
        """Summarize the attempts of a single pair."""
        if not attempts:
            raise ValueError("cannot summarize an empty attempt chain")
        ordered = sorted(attempts, key=lambda a: a.try_number)
        last = ordered[-1]
        last_error = next((a.error for a in reversed(ordered) if a.error), None)
        return cls(
            event_id=last.event_id,
            subscription_id=last.subscription_id,
            event_type=last.event_type,
            attempt_count=len(ordered),
            last_status=last.status,
            last_response_status=last.response_status,
            last_error=last_error,
            last_attempted_at=next(
                (a.attempted_at for a in reversed(ordered) if a.attempted_at), None
            ),
            settled=last.status.is_terminal,
        )
