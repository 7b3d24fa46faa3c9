"""Webhook delivery for Courier.

Components:
    - EventDispatcher: fans events out to matching subscriptions
    - DeliveryWorker: claims, signs, sends and records one attempt
    - DeliveryPolicy: turns a call outcome into SUCCEED / RETRY / FAIL
    - RetryScheduler: polls for due retries and interrupted attempts
    - WorkerPool: bounded concurrency for delivery tasks
    - WebhookSender: the HTTP transport

Receiver contract:
    - Verify ``X-Webhook-Signature`` (hex HMAC-SHA256 of the raw body)
      with ``courier.signing.verify`` before trusting the request.
    - Respond within the timeout (30 seconds by default).
    - Return 2xx only after the event is durably accepted.
    - De-duplicate on ``eventId``: delivery is at-least-once.
"""

from .dispatcher import EventDispatcher, make_event
from .policy import DeliveryDecision, DeliveryPolicy, Verdict, describe_failure
from .pool import WorkerPool
from .scheduler import RetryScheduler
from .transport import DeliveryResult, WebhookSender
from .worker import INTERRUPTED_ERROR, DeliveryWorker, build_headers

__all__ = [
    "INTERRUPTED_ERROR",
    "DeliveryDecision",
    "DeliveryPolicy",
    "DeliveryResult",
    "DeliveryWorker",
    "EventDispatcher",
    "RetryScheduler",
    "Verdict",
    "WebhookSender",
    "WorkerPool",
    "build_headers",
    "describe_failure",
    "make_event",
]
