"""Tests for Courier REST API."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from courier.api import create_app
from courier.api.router import set_service
from courier.config import Settings
from courier.exceptions import NotFoundError, StorageError, ValidationError
from courier.models import (
    DeliveryAttempt,
    DeliveryStatus,
    DeliverySummary,
    EventType,
    RegisteredSubscription,
    Subscription,
)
from courier.service import CourierService

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _subscription(**overrides) -> Subscription:
    fields = {
        "id": "sub_1",
        "target_url": "https://partner.example.com/hooks",
        "event_types": [EventType.PAYMENT_SUCCESS],
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return Subscription(**fields)


def _attempt(**overrides) -> DeliveryAttempt:
    fields = {
        "id": "dlv_1",
        "event_id": "evt_1",
        "subscription_id": "sub_1",
        "event_type": EventType.PAYMENT_SUCCESS,
        "try_number": 1,
        "status": DeliveryStatus.SUCCEEDED,
        "scheduled_at": NOW,
        "attempted_at": NOW,
        "completed_at": NOW,
        "response_status": 200,
        "created_at": NOW,
    }
    fields.update(overrides)
    return DeliveryAttempt(**fields)


@pytest.fixture
def mock_service():
    """Create a mock CourierService."""
    service = MagicMock(spec=CourierService)
    for name in (
        "register",
        "get_subscription",
        "list_subscriptions",
        "enable",
        "disable",
        "delete",
        "publish_event",
        "delivery_history",
        "delivery_summaries",
        "health_check",
    ):
        setattr(service, name, AsyncMock())
    return service


@pytest.fixture
def test_app(mock_service):
    """Create the app with a mocked service and no lifespan."""
    app = create_app(Settings(env="test", cors_enabled=False))
    set_service(mock_service)
    yield app
    set_service(None)


@pytest.fixture
def client(test_app):
    """Create a test client (not entered, so the lifespan does not run)."""
    return TestClient(test_app)


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_when_database_connected(self, client, mock_service):
        """Should return healthy when the database answers."""
        mock_service.health_check.return_value = True

        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database_connected"] is True
        assert "version" in data

    def test_health_when_service_not_initialized(self, test_app):
        """Should return unhealthy when service not ready."""
        set_service(None)
        response = TestClient(test_app).get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "unhealthy"
        assert response.json()["database_connected"] is False

    def test_endpoints_unavailable_without_service(self, test_app):
        """Endpoints needing the service should return 503 before startup."""
        set_service(None)
        response = TestClient(test_app).get("/api/v1/subscriptions")
        assert response.status_code == 503


class TestSubscriptionEndpoints:
    """Tests for /subscriptions endpoints."""

    def test_create_returns_secret(self, client, mock_service):
        """Registering should return 201 with the signing secret."""
        mock_service.register.return_value = RegisteredSubscription(
            **_subscription().model_dump(), secret="s" * 64
        )

        response = client.post(
            "/api/v1/subscriptions",
            json={
                "target_url": "https://partner.example.com/hooks",
                "event_types": ["PAYMENT_SUCCESS"],
                "max_tries": 5,
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "sub_1"
        assert data["secret"] == "s" * 64
        mock_service.register.assert_called_once()
        args, kwargs = mock_service.register.call_args
        assert args == ("https://partner.example.com/hooks", ["PAYMENT_SUCCESS"])
        assert kwargs["max_tries"] == 5

    def test_create_validation_error(self, client, mock_service):
        """Registry validation errors should map to 400."""
        mock_service.register.side_effect = ValidationError("event_types", "unknown event type")

        response = client.post(
            "/api/v1/subscriptions",
            json={"target_url": "https://partner.example.com/hooks", "event_types": ["NOPE"]},
        )

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "event_types"

    def test_create_requires_event_types(self, client):
        """An empty event type list should fail request validation."""
        response = client.post(
            "/api/v1/subscriptions",
            json={"target_url": "https://partner.example.com/hooks", "event_types": []},
        )
        assert response.status_code == 422

    def test_get_has_no_secret(self, client, mock_service):
        """Reading a subscription should never expose the secret."""
        mock_service.get_subscription.return_value = _subscription()

        response = client.get("/api/v1/subscriptions/sub_1")

        assert response.status_code == 200
        assert "secret" not in response.json()

    def test_get_not_found(self, client, mock_service):
        """Unknown IDs should map to 404."""
        mock_service.get_subscription.side_effect = NotFoundError("subscription", "sub_x")

        response = client.get("/api/v1/subscriptions/sub_x")

        assert response.status_code == 404
        assert response.json()["error"]["resource_id"] == "sub_x"

    def test_list(self, client, mock_service):
        """Listing should pass filters through and count results."""
        mock_service.list_subscriptions.return_value = [_subscription(), _subscription(id="sub_2")]

        response = client.get("/api/v1/subscriptions", params={"active_only": "true", "limit": 10})

        assert response.status_code == 200
        assert response.json()["count"] == 2
        mock_service.list_subscriptions.assert_called_once_with(
            active_only=True, limit=10, offset=0
        )

    def test_disable_with_reason(self, client, mock_service):
        """The optional body should carry the reason."""
        mock_service.disable.return_value = _subscription(active=False, disabled_reason="paused")

        response = client.post("/api/v1/subscriptions/sub_1/disable", json={"reason": "paused"})

        assert response.status_code == 200
        assert response.json()["active"] is False
        mock_service.disable.assert_called_once_with("sub_1", reason="paused")

    def test_disable_without_body(self, client, mock_service):
        """Disabling without a body should pass no reason."""
        mock_service.disable.return_value = _subscription(active=False)

        response = client.post("/api/v1/subscriptions/sub_1/disable")

        assert response.status_code == 200
        mock_service.disable.assert_called_once_with("sub_1", reason=None)

    def test_enable(self, client, mock_service):
        """Enabling should return the active subscription."""
        mock_service.enable.return_value = _subscription()

        response = client.post("/api/v1/subscriptions/sub_1/enable")

        assert response.status_code == 200
        assert response.json()["active"] is True

    def test_delete(self, client, mock_service):
        """Deleting should return 204."""
        response = client.delete("/api/v1/subscriptions/sub_1")

        assert response.status_code == 204
        mock_service.delete.assert_called_once_with("sub_1")

    def test_storage_error_maps_to_503(self, client, mock_service):
        """Storage failures should map to 503."""
        mock_service.delete.side_effect = StorageError("database is locked", transient=True)

        response = client.delete("/api/v1/subscriptions/sub_1")

        assert response.status_code == 503


class TestDeliveryEndpoints:
    """Tests for delivery history endpoints."""

    def test_subscription_deliveries(self, client, mock_service):
        """History should include attempts and summaries, filtered by status."""
        attempt = _attempt(status=DeliveryStatus.FAILED_PERMANENT, error="HTTP 500")
        mock_service.delivery_history.return_value = [attempt]
        mock_service.delivery_summaries.return_value = [DeliverySummary.from_attempts([attempt])]

        response = client.get(
            "/api/v1/subscriptions/sub_1/deliveries", params={"status": "failed_permanent"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["attempts"][0]["status"] == "failed_permanent"
        assert data["summaries"][0]["last_error"] == "HTTP 500"
        mock_service.delivery_history.assert_called_once_with(
            subscription_id="sub_1",
            status=DeliveryStatus.FAILED_PERMANENT,
            limit=100,
            offset=0,
        )

    def test_invalid_status_filter(self, client):
        """Unknown status values should fail request validation."""
        response = client.get("/api/v1/subscriptions/sub_1/deliveries", params={"status": "lost"})
        assert response.status_code == 422

    def test_event_deliveries(self, client, mock_service):
        """Event history should query by event ID."""
        mock_service.delivery_history.return_value = [_attempt()]
        mock_service.delivery_summaries.return_value = []

        response = client.get("/api/v1/events/evt_1/deliveries")

        assert response.status_code == 200
        assert response.json()["count"] == 1
        mock_service.delivery_history.assert_called_once_with(event_id="evt_1", limit=1000)


class TestPublishEndpoint:
    """Tests for POST /events."""

    def test_publish(self, client, mock_service):
        """Publishing should return 202 with the event ID and attempt IDs."""
        mock_service.publish_event.return_value = ["dlv_1", "dlv_2"]

        response = client.post(
            "/api/v1/events",
            json={"event_type": "MEMBER_CREATED", "data": {"memberId": "mem_1"}},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["event_id"].startswith("evt_")
        assert data["attempt_ids"] == ["dlv_1", "dlv_2"]
        assert data["subscriber_count"] == 2
        [event] = mock_service.publish_event.call_args.args
        assert event.id == data["event_id"]
        assert event.event_type is EventType.MEMBER_CREATED
        assert event.data == {"memberId": "mem_1"}

    def test_publish_unknown_type(self, client, mock_service):
        """Unknown event types should map to 400 without publishing."""
        response = client.post("/api/v1/events", json={"event_type": "ORDER_SHIPPED"})

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "event_type"
        mock_service.publish_event.assert_not_called()

    def test_publish_naive_timestamp(self, client):
        """occurred_at must carry a timezone."""
        response = client.post(
            "/api/v1/events",
            json={"event_type": "MEMBER_CREATED", "occurred_at": "2026-01-01T12:00:00"},
        )
        assert response.status_code == 422
