"""SQLAlchemy table definitions for Courier.

Tables:
    - subscriptions: registered receivers, secret, failure counter
    - subscription_event_types: event types per subscription
    - events: immutable snapshot of each published event and its exact body
    - delivery_attempts: one row per (event, subscription, try number)

delivery_attempts.subscription_id deliberately has no foreign key: deleting
a subscription keeps its delivery history.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

Base: Any = declarative_base()


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetimes on every backend.

    SQLite has no timezone support, so values are stored as naive UTC there
    and re-tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class SubscriptionRow(Base):
    """A registered webhook receiver."""

    __tablename__ = "subscriptions"

    id = Column(String(40), primary_key=True)
    target_url = Column(String(2048), nullable=False)
    secret = Column(String(128), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    disabled_reason = Column(String(255))
    description = Column(String(500))
    created_by = Column(String(100))
    max_tries = Column(Integer)
    timeout_seconds = Column(Float)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
    last_delivered_at = Column(UTCDateTime)

    event_types = relationship(
        "SubscriptionEventTypeRow",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_subscriptions_active", "active"),)

    def __repr__(self) -> str:
        return f"<SubscriptionRow(id={self.id}, url='{self.target_url}', active={self.active})>"


class SubscriptionEventTypeRow(Base):
    """One subscribed event type."""

    __tablename__ = "subscription_event_types"

    subscription_id = Column(
        String(40),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    event_type = Column(String(64), primary_key=True)

    __table_args__ = (Index("ix_subscription_event_types_event_type", "event_type"),)


class EventRow(Base):
    """Snapshot of a published event; ``body`` is the exact signed request body."""

    __tablename__ = "events"

    id = Column(String(40), primary_key=True)
    event_type = Column(String(64), nullable=False)
    occurred_at = Column(UTCDateTime, nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)


class DeliveryAttemptRow(Base):
    """One try to deliver one event to one subscription."""

    __tablename__ = "delivery_attempts"

    id = Column(String(40), primary_key=True)
    event_id = Column(String(40), ForeignKey("events.id"), nullable=False)
    subscription_id = Column(String(40), nullable=False)
    event_type = Column(String(64), nullable=False)
    try_number = Column(Integer, nullable=False)
    status = Column(String(32), nullable=False)
    scheduled_at = Column(UTCDateTime, nullable=False)
    attempted_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)
    response_status = Column(Integer)
    response_body = Column(Text)
    error = Column(Text)
    error_code = Column(String(64))
    duration_ms = Column(Integer)
    next_retry_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "event_id", "subscription_id", "try_number", name="uq_delivery_attempts_try"
        ),
        Index("ix_delivery_attempts_status_scheduled", "status", "scheduled_at"),
        Index("ix_delivery_attempts_subscription", "subscription_id", "created_at"),
        Index("ix_delivery_attempts_event", "event_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttemptRow(id={self.id}, event={self.event_id}, "
            f"subscription={self.subscription_id}, try={self.try_number}, status={self.status})>"
        )
