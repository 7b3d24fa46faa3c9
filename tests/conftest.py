"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from courier.config import RetryPolicy, Settings
from courier.service import CourierService
from courier.storage import Database, DeliveryStore, SubscriptionRegistry

# Add tests directory to path so test modules can import the helpers below
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))


class FakeClock:
    """Controllable time source."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        """Move time forward and return the new time."""
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@dataclass
class ReceivedRequest:
    """A request captured by the fake receiver."""

    url: str
    headers: dict[str, str]
    body: bytes

    @property
    def payload(self) -> dict[str, Any]:
        return json.loads(self.body)


Responder = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


@dataclass
class Receiver:
    """Fake webhook receiver backed by httpx.MockTransport.

    Responses are taken from ``responses`` in order (status codes, exceptions
    to raise, or callables); once exhausted, ``default_status`` is returned.
    """

    default_status: int = 200
    responses: list[int | Exception | Responder] = field(default_factory=list)
    requests: list[ReceivedRequest] = field(default_factory=list)

    def respond_with(self, *responses: int | Exception | Responder) -> None:
        self.responses.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response | Awaitable[httpx.Response]:
        self.requests.append(
            ReceivedRequest(
                url=str(request.url),
                headers={k.lower(): v for k, v in request.headers.items()},
                body=request.content,
            )
        )
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            if callable(response):
                return response(request)
            return httpx.Response(response, text="ok" if response < 300 else "error")
        status = self.default_status
        return httpx.Response(status, text="ok" if status < 300 else "error")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def receiver() -> Receiver:
    """Create a fake receiver that answers 200 by default."""
    return Receiver()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite database in a temporary file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'courier.db'}"


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Settings for tests: temp database, no background scheduler."""
    return Settings(
        env="test",
        database_url=database_url,
        scheduler_enabled=False,
        retry=RetryPolicy(max_tries=3, base_delay_seconds=5.0, max_delay_seconds=300.0),
        disable_threshold=10,
        delivery_timeout_seconds=5.0,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncIterator[Database]:
    """Initialized database with the schema created."""
    db = Database(database_url)
    await db.initialize()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def registry(database: Database, clock: FakeClock) -> SubscriptionRegistry:
    """Subscription registry on the test database."""
    return SubscriptionRegistry(database, clock=clock)


@pytest_asyncio.fixture
async def store(database: Database, clock: FakeClock) -> DeliveryStore:
    """Delivery store on the test database."""
    return DeliveryStore(database, clock=clock)


@pytest_asyncio.fixture
async def service(
    test_settings: Settings,
    receiver: Receiver,
    clock: FakeClock,
) -> AsyncIterator[CourierService]:
    """Fully wired service delivering to the fake receiver."""
    courier = CourierService.create(test_settings, transport=receiver.transport, clock=clock)
    await courier.initialize()
    yield courier
    await courier.close(grace_seconds=1.0)
