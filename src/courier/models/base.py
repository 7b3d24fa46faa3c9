"""Shared helpers for Courier models."""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

# Injectable time source; tests pass a fake clock to control backoff.
Clock = Callable[[], datetime]

_id_lock = threading.Lock()
_last_stamp = 0


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def generate_id(prefix: str) -> str:
    """Generate a globally unique, time-ordered ID with the given prefix.

    The first 14 hex digits are a microsecond timestamp that never repeats
    or goes backwards within a process, so IDs sort in creation order even
    when their ``created_at`` values are equal. The remaining 18 are random.

    Examples:
        generate_id("sub") -> "sub_065c1f3a2b7e90c1d4f6a8b2e3579d01"
        generate_id("evt") -> "evt_065c1f3a2b7e914a7be21f09cd338655"
    """
    global _last_stamp
    with _id_lock:
        stamp = max(time.time_ns() // 1000, _last_stamp + 1)
        _last_stamp = stamp
    return f"{prefix}_{stamp:014x}{secrets.token_hex(9)}"
