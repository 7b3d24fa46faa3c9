"""Delivery worker: claim, sign, send, record.

One call to ``process`` handles one attempt:

    1. claim PENDING -> IN_FLIGHT (or abandon it if its subscription is gone)
    2. sign the stored body and POST it
    3. ask the DeliveryPolicy for a verdict
    4. apply the verdict: SUCCEEDED, RETRY_SCHEDULED (+ next PENDING row),
       or FAILED_PERMANENT (+ failure counter, + auto-disable at threshold)

Each step uses its own short transaction. Failures are recorded on the
attempt row and never raised to the publisher.
"""

from __future__ import annotations

from datetime import timedelta

from courier.exceptions import NotFoundError
from courier.logging import DELIVERY_CONTEXT_KEYS, bind_context, get_logger, unbind_context
from courier.models import Clock, DeliveryAttempt, DeliveryStatus, utcnow
from courier.signing import (
    ATTEMPT_HEADER,
    DELIVERY_ID_HEADER,
    EVENT_ID_HEADER,
    EVENT_TYPE_HEADER,
    SIGNATURE_HEADER,
    sign,
)
from courier.storage import ABANDONED_ERROR, DeliveryJob, DeliveryStore, SubscriptionRegistry

from .policy import DeliveryDecision, DeliveryPolicy, Verdict
from .transport import DeliveryResult, WebhookSender

logger = get_logger(__name__)

INTERRUPTED_ERROR = "delivery interrupted"



def build_headers(job: DeliveryJob, body: bytes) -> dict[str, str]:
    """Request headers for one attempt, including the body signature."""
    attempt = job.attempt
    return {
        "Content-Type": "application/json",
        EVENT_TYPE_HEADER: attempt.event_type.value,
        SIGNATURE_HEADER: sign(job.secret, body),
        EVENT_ID_HEADER: attempt.event_id,
        DELIVERY_ID_HEADER: attempt.id,
        ATTEMPT_HEADER: str(attempt.try_number),
    }


class DeliveryWorker:
    """Executes delivery attempts and applies their outcome."""

    def __init__(
        self,
        store: DeliveryStore,
        registry: SubscriptionRegistry,
        sender: WebhookSender,
        policy: DeliveryPolicy,
        *,
        disable_threshold: int = 10,
        default_timeout: float = 30.0,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Delivery attempt store.
            registry: Subscription registry (failure counter, auto-disable).
            sender: HTTP transport.
            policy: Outcome classification.
            disable_threshold: Consecutive failures before auto-disable.
            default_timeout: HTTP timeout when the subscription sets none.
            clock: Time source.
        """
        self._store = store
        self._registry = registry
        self._sender = sender
        self._policy = policy
        self._disable_threshold = disable_threshold
        self._default_timeout = default_timeout
        self._clock = clock

    async def process(self, attempt_id: str) -> DeliveryStatus | None:
        """Deliver one PENDING attempt.

        Returns:
            The status the attempt ended in, or None if it could not be
            claimed (already claimed, not yet due, or finished).
        """
        bind_context(attempt_id=attempt_id)
        try:
            job = await self._store.claim(attempt_id)
            if job is None:
                if await self._store.abandon_if_orphaned(attempt_id):
                    logger.info("Delivery abandoned", reason=ABANDONED_ERROR)
                    return DeliveryStatus.FAILED_PERMANENT
                logger.debug("Attempt not claimable")
                return None
            return await self._deliver(job)
        finally:
            unbind_context(*DELIVERY_CONTEXT_KEYS)

    async def reclaim(self, attempt_id: str) -> DeliveryStatus | None:
        """Resolve an attempt left IN_FLIGHT by an interrupted worker.

        The attempt goes through the normal failure path, so it is retried
        if tries remain.
        """
        bind_context(attempt_id=attempt_id)
        try:
            attempt = await self._store.get(attempt_id)
            if attempt.status is not DeliveryStatus.IN_FLIGHT:
                return None

            max_tries: int | None = None
            try:
                max_tries = (await self._registry.get(attempt.subscription_id)).max_tries
            except NotFoundError:
                pass

            logger.warning("Reclaiming interrupted delivery", try_number=attempt.try_number)
            result = DeliveryResult(error=INTERRUPTED_ERROR)
            verdict = self._policy.decide(result, attempt.try_number, max_tries)
            return await self._apply(attempt, result, verdict)
        finally:
            unbind_context(*DELIVERY_CONTEXT_KEYS)

    async def _deliver(self, job: DeliveryJob) -> DeliveryStatus | None:
        attempt = job.attempt
        bind_context(
            subscription_id=attempt.subscription_id,
            event_id=attempt.event_id,
            try_number=attempt.try_number,
        )

        body = job.body.encode("utf-8")
        result = await self._sender.send(
            job.target_url,
            body,
            build_headers(job, body),
            timeout=job.timeout_seconds or self._default_timeout,
        )
        verdict = self._policy.decide(result, attempt.try_number, job.max_tries)
        return await self._apply(attempt, result, verdict)

    async def _apply(
        self,
        attempt: DeliveryAttempt,
        result: DeliveryResult,
        verdict: Verdict,
    ) -> DeliveryStatus | None:
        if verdict.decision is DeliveryDecision.SUCCEED:
            return await self._succeed(attempt, result)
        if verdict.decision is DeliveryDecision.RETRY:
            return await self._retry(attempt, result, verdict)
        return await self._fail(attempt, result, verdict)

    async def _succeed(self, attempt: DeliveryAttempt, result: DeliveryResult) -> DeliveryStatus | None:
        updated = await self._store.mark_succeeded(
            attempt.id,
            response_status=result.status_code,
            response_body=result.body,
            duration_ms=result.duration_ms,
        )
        if not updated:
            logger.warning("Attempt left in-flight state before success was recorded")
            return None

        await self._registry.record_success(attempt.subscription_id)
        logger.info(
            "Webhook delivered",
            status_code=result.status_code,
            duration_ms=result.duration_ms,
        )
        return DeliveryStatus.SUCCEEDED

    async def _retry(
        self,
        attempt: DeliveryAttempt,
        result: DeliveryResult,
        verdict: Verdict,
    ) -> DeliveryStatus | None:
        assert verdict.retry_delay is not None
        assert verdict.error is not None and verdict.error_code is not None
        next_retry_at = self._clock() + timedelta(seconds=verdict.retry_delay)

        next_attempt = await self._store.schedule_retry(
            attempt.id,
            next_retry_at=next_retry_at,
            error=verdict.error,
            error_code=verdict.error_code,
            response_status=result.status_code,
            response_body=result.body,
            duration_ms=result.duration_ms,
        )
        if next_attempt is not None:
            logger.info(
                "Webhook scheduled for retry",
                error=verdict.error,
                next_try=next_attempt.try_number,
                next_retry_at=next_retry_at.isoformat(),
            )
            return DeliveryStatus.RETRY_SCHEDULED

        # The subscription went away during the call: close the chain
        # without charging it a failure.
        failed = await self._store.mark_failed(
            attempt.id,
            error=f"{verdict.error}; {ABANDONED_ERROR}",
            error_code=verdict.error_code,
            response_status=result.status_code,
            response_body=result.body,
            duration_ms=result.duration_ms,
        )
        if not failed:
            logger.warning("Attempt left in-flight state before retry was recorded")
            return None
        logger.info("Retry not scheduled", reason=ABANDONED_ERROR)
        return DeliveryStatus.FAILED_PERMANENT

    async def _fail(
        self,
        attempt: DeliveryAttempt,
        result: DeliveryResult,
        verdict: Verdict,
    ) -> DeliveryStatus | None:
        assert verdict.error is not None and verdict.error_code is not None
        updated = await self._store.mark_failed(
            attempt.id,
            error=verdict.error,
            error_code=verdict.error_code,
            response_status=result.status_code,
            response_body=result.body,
            duration_ms=result.duration_ms,
        )
        if not updated:
            logger.warning("Attempt left in-flight state before failure was recorded")
            return None

        failures = await self._registry.record_failure(attempt.subscription_id)
        logger.warning(
            "Webhook delivery failed permanently",
            error=verdict.error,
            consecutive_failures=failures,
        )

        if failures is not None and failures >= self._disable_threshold:
            try:
                await self._registry.disable(
                    attempt.subscription_id,
                    reason=f"disabled after {failures} consecutive failures",
                )
            except NotFoundError:
                logger.info("Subscription deleted before it could be disabled")

        return DeliveryStatus.FAILED_PERMANENT
