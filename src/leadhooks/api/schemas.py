"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from leadhooks.models import (
    DeliveryAttempt,
    DeliveryPage,
    DeliveryResult,
    WebhookCreate,
    WebhookEndpoint,
    WebhookUpdate,
)

# Request bodies are the registry's own input models
WebhookCreateRequest = WebhookCreate
WebhookUpdateRequest = WebhookUpdate


class WebhookResponse(BaseModel):
    """Response model for a webhook.

    The secret itself is never returned; ``has_secret`` reports whether one
    is configured.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    url: str
    events: list[str]
    has_secret: bool
    enabled: bool
    failure_count: int
    last_triggered_at: datetime | None = None
    last_status_code: int | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_endpoint(cls, endpoint: WebhookEndpoint) -> WebhookResponse:
        return cls(
            id=endpoint.id,
            name=endpoint.name,
            url=endpoint.url,
            events=list(endpoint.events),
            has_secret=bool(endpoint.secret),
            enabled=endpoint.enabled,
            failure_count=endpoint.failure_count,
            last_triggered_at=endpoint.last_triggered_at,
            last_status_code=endpoint.last_status_code,
            created_at=endpoint.created_at,
            updated_at=endpoint.updated_at,
        )


class WebhookListResponse(BaseModel):
    """Response for listing webhooks."""

    model_config = ConfigDict(extra="forbid")

    webhooks: list[WebhookResponse]
    count: int


class EventTypeResponse(BaseModel):
    """A subscribable event type."""

    model_config = ConfigDict(extra="forbid")

    type: str
    description: str


class EventTypeListResponse(BaseModel):
    """Response for the event type catalog."""

    model_config = ConfigDict(extra="forbid")

    events: list[EventTypeResponse]


class DeliveryResponse(BaseModel):
    """Response model for one logged delivery attempt."""

    model_config = ConfigDict(extra="forbid")

    id: str
    webhook_id: str
    event: str
    payload: dict[str, Any]
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    success: bool
    attempt: int
    attempted_at: datetime
    duration_ms: int

    @classmethod
    def from_attempt(cls, attempt: DeliveryAttempt) -> DeliveryResponse:
        status_code = attempt.status_code
        return cls(
            id=attempt.id,
            webhook_id=attempt.webhook_id,
            event=attempt.event,
            payload=attempt.payload.model_dump(mode="json"),
            status_code=status_code,
            response_body=attempt.response_body,
            error=attempt.error,
            success=status_code is not None and 200 <= status_code < 300,
            attempt=attempt.attempt,
            attempted_at=attempt.attempted_at,
            duration_ms=attempt.duration_ms,
        )


class DeliveryListResponse(BaseModel):
    """Paginated delivery history for a webhook.

    Attributes:
        deliveries: Attempts on this page, newest first.
        page: Current page (1-based).
        limit: Page size.
        total: Total attempts logged for the webhook.
        total_pages: Number of pages at this page size.
        has_more: Whether a later page exists.
    """

    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool

    @classmethod
    def from_page(cls, page: DeliveryPage) -> DeliveryListResponse:
        return cls(
            deliveries=[DeliveryResponse.from_attempt(a) for a in page.deliveries],
            page=page.page,
            limit=page.limit,
            total=page.total,
            total_pages=page.total_pages,
            has_more=page.has_more,
        )


class TestDeliveryResponse(BaseModel):
    """Outcome of a test delivery."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    duration_ms: int = Field(default=0, ge=0)
    error: str | None = None

    @classmethod
    def from_result(cls, result: DeliveryResult) -> TestDeliveryResponse:
        return cls(**result.model_dump())


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy or unhealthy).
        version: API version.
        storage: Store backend in use, or None when not initialized.
        retry_worker_running: Whether the retry poll loop is running.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    storage: Literal["memory", "sql"] | None = None
    retry_worker_running: bool = False


__all__ = [
    "DeliveryListResponse",
    "DeliveryResponse",
    "EventTypeListResponse",
    "EventTypeResponse",
    "HealthResponse",
    "TestDeliveryResponse",
    "WebhookCreateRequest",
    "WebhookListResponse",
    "WebhookResponse",
    "WebhookUpdateRequest",
]
