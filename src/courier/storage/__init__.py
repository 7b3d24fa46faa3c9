"""Persistence layer for Courier.

SQLAlchemy asyncio over SQLite (aiosqlite, the default) or PostgreSQL
(asyncpg). Components:
    - Database: engine and transactional sessions
    - SubscriptionRegistry: subscriptions and their failure counter
    - DeliveryStore: events, delivery attempts and their transitions
"""

from .database import Database
from .deliveries import ABANDONED_ERROR, DeliveryJob, DeliveryStore
from .retry import is_transient_db_error, storage_retry
from .subscriptions import SubscriptionRegistry

__all__ = [
    "ABANDONED_ERROR",
    "Database",
    "DeliveryJob",
    "DeliveryStore",
    "SubscriptionRegistry",
    "is_transient_db_error",
    "storage_retry",
]
