"""Delivery outcome classification.

Turns a DeliveryResult into an explicit decision. The worker applies the
decision; nothing here raises.

    2xx                                -> SUCCEED
    timeout, network error, 5xx, 429   -> RETRY while tries remain, else FAIL
    other 4xx (and 1xx/3xx)            -> same as above when
                                          retry_client_errors is set, else FAIL
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from courier.config import RetryPolicy
from courier.exceptions import DeliveryError, PermanentDeliveryError, TransientDeliveryError

from .transport import DeliveryResult

RETRYABLE_STATUS_CODES = frozenset({408, 429})


class DeliveryDecision(str, Enum):
    """What to do with an attempt after its HTTP call."""

    SUCCEED = "succeed"
    RETRY = "retry"
    FAIL = "fail"


@dataclass(frozen=True)
class Verdict:
    """A decision plus the details the worker records with it.

    Attributes:
        decision: SUCCEED, RETRY or FAIL.
        failure: The delivery error recorded for RETRY and FAIL. It is
            stored on the attempt row, never raised.
        retry_delay: Seconds until the next try, for RETRY.
    """

    decision: DeliveryDecision
    failure: DeliveryError | None = None
    retry_delay: float | None = None

    @property
    def error(self) -> str | None:
        return self.failure.message if self.failure is not None else None

    @property
    def error_code(self) -> str | None:
        return self.failure.code if self.failure is not None else None


def describe_failure(result: DeliveryResult) -> str:
    """Human-readable error detail for a failed call."""
    if result.status_code is not None:
        detail = f"HTTP {result.status_code}"
        if result.body:
            detail = f"{detail}: {result.body[:200]}"
        return detail
    return result.error or "Unknown error"


class DeliveryPolicy:
    """Decides between success, retry and terminal failure.

    Example:
        ```python
        policy = DeliveryPolicy(RetryPolicy(max_tries=3))
        verdict = policy.decide(result, try_number=1, max_tries=3)
        if verdict.decision is DeliveryDecision.RETRY:
            ...
        ```
    """

    def __init__(self, retry_policy: RetryPolicy | None = None) -> None:
        self.retry_policy = retry_policy or RetryPolicy()

    def is_retryable(self, result: DeliveryResult) -> bool:
        """Whether a failed call may be tried again."""
        if result.status_code is None:
            return True
        if result.status_code >= 500 or result.status_code in RETRYABLE_STATUS_CODES:
            return True
        return self.retry_policy.retry_client_errors

    def decide(
        self,
        result: DeliveryResult,
        try_number: int,
        max_tries: int | None = None,
    ) -> Verdict:
        """Classify the outcome of try ``try_number``.

        Args:
            result: Outcome of the HTTP call.
            try_number: Which try this was (1-based).
            max_tries: Total tries allowed; defaults to the retry policy's.

        Returns:
            The verdict to apply.
        """
        if result.ok:
            return Verdict(decision=DeliveryDecision.SUCCEED)

        limit = max_tries if max_tries is not None else self.retry_policy.max_tries
        error = describe_failure(result)

        if not self.is_retryable(result):
            return Verdict(
                decision=DeliveryDecision.FAIL,
                failure=PermanentDeliveryError(error, status_code=result.status_code),
            )

        if try_number < limit:
            return Verdict(
                decision=DeliveryDecision.RETRY,
                failure=TransientDeliveryError(error, status_code=result.status_code),
                retry_delay=self.retry_policy.delay_for(try_number),
            )

        return Verdict(
            decision=DeliveryDecision.FAIL,
            failure=PermanentDeliveryError(
                f"Max retries exceeded: {error}", status_code=result.status_code
            ),
        )
