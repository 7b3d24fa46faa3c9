"""FastAPI router for the Courier admin API.

Courier errors raised by the service are turned into responses by the
exception handlers registered in ``courier.api.app``.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courier import __version__
from courier.models import DeliveryStatus, RegisteredSubscription, Subscription
from courier.service import CourierService
from courier.webhooks import make_event

from .schemas import (
    CreateSubscriptionRequest,
    DeliveryHistoryResponse,
    DisableSubscriptionRequest,
    HealthResponse,
    PublishEventRequest,
    PublishEventResponse,
    SubscriptionListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: CourierService | None = None


def set_service(service: CourierService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> CourierService:
    """Dependency to get the CourierService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[CourierService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health, including database connectivity."""
    connected = _service is not None and await _service.health_check()
    return HealthResponse(
        status="healthy" if connected else "unhealthy",
        version=__version__,
        database_connected=connected,
    )


@router.post(
    "/subscriptions",
    response_model=RegisteredSubscription,
    status_code=status.HTTP_201_CREATED,
    tags=["subscriptions"],
)
async def create_subscription(
    request: CreateSubscriptionRequest,
    service: ServiceDep,
) -> RegisteredSubscription:
    """Register a subscription.

    The response is the only place the signing secret is ever returned.
    """
    subscription = await service.register(
        request.target_url,
        request.event_types,
        description=request.description,
        created_by=request.created_by,
        max_tries=request.max_tries,
        timeout_seconds=request.timeout_seconds,
    )
    logger.info("Registered subscription %s", subscription.id)
    return subscription


@router.get("/subscriptions", response_model=SubscriptionListResponse, tags=["subscriptions"])
async def list_subscriptions(
    service: ServiceDep,
    active_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SubscriptionListResponse:
    """List subscriptions, oldest first."""
    subscriptions = await service.list_subscriptions(
        active_only=active_only, limit=limit, offset=offset
    )
    return SubscriptionListResponse(subscriptions=subscriptions, count=len(subscriptions))


@router.get(
    "/subscriptions/{subscription_id}",
    response_model=Subscription,
    tags=["subscriptions"],
)
async def get_subscription(subscription_id: str, service: ServiceDep) -> Subscription:
    """Get a subscription. The signing secret is not included."""
    return await service.get_subscription(subscription_id)


@router.post(
    "/subscriptions/{subscription_id}/enable",
    response_model=Subscription,
    tags=["subscriptions"],
)
async def enable_subscription(subscription_id: str, service: ServiceDep) -> Subscription:
    """Re-activate a subscription and reset its failure counter."""
    return await service.enable(subscription_id)


@router.post(
    "/subscriptions/{subscription_id}/disable",
    response_model=Subscription,
    tags=["subscriptions"],
)
async def disable_subscription(
    subscription_id: str,
    service: ServiceDep,
    request: DisableSubscriptionRequest | None = None,
) -> Subscription:
    """Disable a subscription. Disabling twice is not an error."""
    reason = request.reason if request is not None else None
    return await service.disable(subscription_id, reason=reason)


@router.delete(
    "/subscriptions/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["subscriptions"],
)
async def delete_subscription(subscription_id: str, service: ServiceDep) -> None:
    """Delete a subscription. Its delivery history is kept."""
    await service.delete(subscription_id)
    logger.info("Deleted subscription %s", subscription_id)


@router.get(
    "/subscriptions/{subscription_id}/deliveries",
    response_model=DeliveryHistoryResponse,
    tags=["deliveries"],
)
async def subscription_deliveries(
    subscription_id: str,
    service: ServiceDep,
    status_filter: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeliveryHistoryResponse:
    """Delivery history for a subscription.

    Works for deleted subscriptions too, since history outlives them.
    """
    attempts = await service.delivery_history(
        subscription_id=subscription_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    summaries = await service.delivery_summaries(subscription_id=subscription_id)
    return DeliveryHistoryResponse(attempts=attempts, summaries=summaries, count=len(attempts))


@router.get(
    "/events/{event_id}/deliveries",
    response_model=DeliveryHistoryResponse,
    tags=["deliveries"],
)
async def event_deliveries(event_id: str, service: ServiceDep) -> DeliveryHistoryResponse:
    """Delivery history for an event across all its subscribers."""
    attempts = await service.delivery_history(event_id=event_id, limit=1000)
    summaries = await service.delivery_summaries(event_id=event_id)
    return DeliveryHistoryResponse(attempts=attempts, summaries=summaries, count=len(attempts))


@router.post(
    "/events",
    response_model=PublishEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def publish_event(request: PublishEventRequest, service: ServiceDep) -> PublishEventResponse:
    """Publish an event. Deliveries run in the background."""
    event = make_event(request.event_type, request.data, occurred_at=request.occurred_at)
    attempt_ids = await service.publish_event(event)
    return PublishEventResponse(
        event_id=event.id,
        attempt_ids=attempt_ids,
        subscriber_count=len(attempt_ids),
    )
