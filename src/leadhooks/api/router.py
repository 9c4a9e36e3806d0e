"""FastAPI router for webhook administration endpoints.

Authentication is left to the host application: mount this router behind
whatever admin auth dependency the CRM already uses.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from leadhooks import __version__
from leadhooks.exceptions import NotFoundError
from leadhooks.service import WebhookService
from leadhooks.storage import SQLWebhookStore
from leadhooks.webhooks.registry import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

from .schemas import (
    DeliveryListResponse,
    EventTypeListResponse,
    EventTypeResponse,
    HealthResponse,
    TestDeliveryResponse,
    WebhookCreateRequest,
    WebhookListResponse,
    WebhookResponse,
    WebhookUpdateRequest,
)


router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__)
    return HealthResponse(
        status="healthy",
        version=__version__,
        storage="sql" if isinstance(_service.store, SQLWebhookStore) else "memory",
        retry_worker_running=_service.scheduler.running,
    )


@router.get("/webhooks", response_model=WebhookListResponse, tags=["webhooks"])
async def list_webhooks(
    service: ServiceDep,
    include_disabled: bool = True,
) -> WebhookListResponse:
    """List all webhooks, newest first."""
    webhooks = await service.registry.list(include_disabled=include_disabled)
    return WebhookListResponse(
        webhooks=[WebhookResponse.from_endpoint(w) for w in webhooks],
        count=len(webhooks),
    )


@router.get("/webhooks/events", response_model=EventTypeListResponse, tags=["webhooks"])
async def list_event_types(service: ServiceDep) -> EventTypeListResponse:
    """List the event types a webhook can subscribe to."""
    return EventTypeListResponse(
        events=[EventTypeResponse(**e) for e in service.registry.events()],
    )


@router.post(
    "/webhooks",
    response_model=WebhookResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: WebhookCreateRequest,
    service: ServiceDep,
) -> WebhookResponse:
    """Register a new webhook.

    The URL must use HTTPS and must not point at localhost or a private
    address. Events must come from the event type catalog.
    """
    webhook = await service.registry.create(request)
    return WebhookResponse.from_endpoint(webhook)


@router.get("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def get_webhook(webhook_id: str, service: ServiceDep) -> WebhookResponse:
    """Get a single webhook."""
    webhook = await service.registry.get(webhook_id)
    return WebhookResponse.from_endpoint(webhook)


@router.patch("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdateRequest,
    service: ServiceDep,
) -> WebhookResponse:
    """Update a webhook.

    Only fields present in the body are changed. Send ``"secret": null`` to
    remove the secret. Re-enabling a disabled webhook resets its failure
    count.
    """
    webhook = await service.registry.update(webhook_id, request)
    return WebhookResponse.from_endpoint(webhook)


@router.delete(
    "/webhooks/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(webhook_id: str, service: ServiceDep) -> Response:
    """Delete a webhook with its delivery history and pending retries."""
    await service.registry.delete(webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/webhooks/{webhook_id}/test",
    response_model=TestDeliveryResponse,
    tags=["webhooks"],
)
async def test_webhook(webhook_id: str, service: ServiceDep) -> TestDeliveryResponse:
    """Send a synthetic lead.created event to a webhook.

    The attempt is logged but never counts toward automatic disabling.
    """
    result = await service.dispatcher.send_test(webhook_id)
    if result is None:
        raise NotFoundError("webhook", webhook_id)
    return TestDeliveryResponse.from_result(result)


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["webhooks"],
)
async def list_deliveries(
    webhook_id: str,
    service: ServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
) -> DeliveryListResponse:
    """Get a webhook's delivery history, newest first."""
    result = await service.registry.list_deliveries(webhook_id, page=page, limit=limit)
    return DeliveryListResponse.from_page(result)


__all__ = [
    "ServiceDep",
    "get_service",
    "router",
    "set_service",
]
