"""Signed HTTP POST transport for webhook deliveries.

WebhookSender never raises for delivery problems. Network errors, timeouts
and non-2xx responses all come back as a DeliveryResult for the policy to
judge.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one HTTP call.

    Attributes:
        status_code: HTTP status, or None if no response was received.
        body: Response body, truncated.
        error: Transport error description when no response was received.
        timed_out: Whether the call hit the timeout.
        duration_ms: Wall-clock duration of the call.
    """

    status_code: int | None = None
    body: str | None = None
    error: str | None = None
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        """True for a 2xx response."""
        return self.status_code is not None and 200 <= self.status_code < 300


class WebhookSender:
    """POSTs request bodies to webhook receivers over a shared httpx client.

    Example:
        ```python
        async with WebhookSender(timeout_seconds=30.0) as sender:
            result = await sender.send(url, body, headers)
        ```
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        user_agent: str = "courier-webhooks",
        response_body_max_chars: int = 1000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the sender.

        Args:
            timeout_seconds: Default timeout for each call.
            user_agent: Value of the User-Agent header.
            response_body_max_chars: Response bodies are truncated to this length.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._timeout = timeout_seconds
        self._user_agent = user_agent
        self._max_body = response_body_max_chars
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
                headers={"User-Agent": self._user_agent},
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> WebhookSender:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _truncate(self, text: str) -> str | None:
        if not text:
            return None
        return text[: self._max_body]

    async def send(
        self,
        url: str,
        body: bytes,
        headers: dict[str, str],
        timeout: float | None = None,
    ) -> DeliveryResult:
        """POST a body to a receiver.

        Args:
            url: Receiver URL.
            body: Exact request body bytes (already signed).
            headers: Request headers.
            timeout: Per-call timeout overriding the default.

        Returns:
            The call outcome.
        """
        if self._client is None:
            await self.open()
        assert self._client is not None

        request_timeout = self._timeout if timeout is None else timeout
        started = time.monotonic()
        try:
            response = await self._client.post(
                url,
                content=body,
                headers=headers,
                timeout=request_timeout,
            )
        except httpx.TimeoutException:
            return DeliveryResult(
                error="Request timeout",
                timed_out=True,
                duration_ms=_elapsed_ms(started),
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            logger.debug("Webhook request to %s failed: %s", url, e)
            return DeliveryResult(
                error=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                duration_ms=_elapsed_ms(started),
            )

        return DeliveryResult(
            status_code=response.status_code,
            body=self._truncate(response.text),
            duration_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
