"""Webhook models for outbound CRM event notifications.

Provides endpoint registration, event payloads, delivery results and the
persisted delivery/retry records used by the dispatch subsystem.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, iso_timestamp, utc_now

# Event types that can trigger webhooks
EventType = Literal[
    "lead.created",
    "lead.updated",
    "lead.status_changed",
    "lead.deleted",
    "lead.activity_added",
]

# All available event types for subscription
ALL_EVENT_TYPES: list[EventType] = [
    "lead.created",
    "lead.updated",
    "lead.status_changed",
    "lead.deleted",
    "lead.activity_added",
]

EVENT_DESCRIPTIONS: dict[EventType, str] = {
    "lead.created": "Triggered when a new lead is added",
    "lead.updated": "Triggered when lead information is changed",
    "lead.status_changed": "Triggered when a lead's status changes",
    "lead.deleted": "Triggered when a lead is removed",
    "lead.activity_added": "Triggered when an activity is added to a lead",
}


class WebhookEndpoint(BaseModel):
    """A registered webhook target.

    Attributes:
        id: Unique identifier for this webhook.
        name: Human-readable name (e.g. "Zapier Integration").
        url: HTTPS endpoint that receives events.
        events: Event types this webhook subscribes to (never empty).
        secret: Shared secret for HMAC-SHA256 signatures (optional).
        enabled: Whether this webhook receives deliveries.
        failure_count: Consecutive failed attempts since the last success.
        last_triggered_at: When the last attempt finished.
        last_status_code: HTTP status of the last attempt (None if no response).
        created_at: When the webhook was registered.
        updated_at: When the webhook was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    name: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1, description="HTTPS endpoint to receive events")
    events: list[EventType] = Field(min_length=1, description="Subscribed event types")
    secret: str | None = Field(default=None, description="Shared secret for signatures")
    enabled: bool = Field(default=True, description="Whether webhook is active")
    failure_count: int = Field(default=0, ge=0, description="Consecutive failures")
    last_triggered_at: datetime | None = Field(default=None)
    last_status_code: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this webhook is enabled and subscribes to the given event type."""
        return self.enabled and event_type in self.events


class WebhookPayload(BaseModel):
    """Event envelope sent to webhook endpoints.

    The serialized form returned by ``to_json()`` is exactly the body that is
    signed and POSTed. Format a payload once per logical event and reuse it
    for every retry so receivers see the same ``id``.

    Attributes:
        id: Unique identifier for this payload (doubles as X-Webhook-ID).
        event: Event type.
        timestamp: ISO-8601 UTC timestamp with millisecond precision.
        data: Event-specific data.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("evt"))
    event: EventType
    timestamp: str = Field(default_factory=lambda: iso_timestamp(utc_now()))
    data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize to the exact JSON body that is signed and sent."""
        return self.model_dump_json()


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt.

    ``status_code`` is 0 when the attempt was rejected before any network
    I/O (URL safety) and None when no HTTP response was received.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    duration_ms: int = Field(default=0, ge=0)
    error: str | None = None


class DispatchResult(DeliveryResult):
    """Delivery result tagged with the webhook it was sent to."""

    webhook_id: str


class DeliveryAttempt(BaseModel):
    """Immutable log record of one delivery attempt (initial, retry or test).

    Attributes:
        id: Unique identifier for this attempt.
        webhook_id: Webhook the attempt was sent to.
        event: Event type delivered.
        payload: The exact payload sent.
        status_code: HTTP status (None if no response, 0 if rejected pre-flight).
        response_body: Truncated response body.
        error: Failure classification text (timeout, connection, HTTP status).
        attempt: Index in the retry schedule (0 = initial delivery).
        attempted_at: When the attempt was made.
        duration_ms: Wall-clock duration of the attempt.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    webhook_id: str
    event: EventType
    payload: WebhookPayload
    status_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    attempt: int = Field(default=0, ge=0)
    attempted_at: datetime = Field(default_factory=utc_now)
    duration_ms: int = Field(default=0, ge=0)

    @classmethod
    def from_result(
        cls,
        webhook_id: str,
        payload: WebhookPayload,
        result: DeliveryResult,
        attempt: int = 0,
    ) -> "DeliveryAttempt":
        """Build the log record for a finished attempt."""
        return cls(
            webhook_id=webhook_id,
            event=payload.event,
            payload=payload,
            status_code=result.status_code,
            response_body=result.response_body,
            error=result.error,
            attempt=attempt,
            duration_ms=result.duration_ms,
        )


class PendingDelivery(BaseModel):
    """A persisted retry waiting for its backoff delay to elapse.

    Attributes:
        id: Unique identifier for this pending retry.
        webhook_id: Webhook to retry.
        payload: The original payload (same id as the initial attempt).
        next_attempt_index: Index in the retry schedule of the attempt to make.
        next_attempt_at: Earliest time the attempt may run.
        claimed_until: Lease expiry while a worker is processing it.
        created_at: When the retry was scheduled.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("rty"))
    webhook_id: str
    payload: WebhookPayload
    next_attempt_index: int = Field(ge=1)
    next_attempt_at: datetime
    claimed_until: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)


class FailureUpdate(BaseModel):
    """Result of recording an attempt against an endpoint's failure count."""

    model_config = ConfigDict(extra="forbid")

    disabled: bool = False
    failure_count: int = Field(default=0, ge=0)


class WebhookCreate(BaseModel):
    """Fields accepted when registering a webhook."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1, max_length=2048)
    events: list[str] = Field(min_length=1)
    secret: str | None = Field(default=None, max_length=255)
    enabled: bool = True


class WebhookUpdate(BaseModel):
    """Fields accepted when updating a webhook.

    Only fields explicitly provided are applied; pass ``secret=None`` to
    remove a secret.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: str | None = Field(default=None, min_length=1, max_length=2048)
    events: list[str] | None = Field(default=None, min_length=1)
    secret: str | None = Field(default=None, max_length=255)
    enabled: bool | None = None


class DeliveryPage(BaseModel):
    """One page of a webhook's delivery history, newest first."""

    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryAttempt]
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total: int = Field(ge=0)
    total_pages: int = Field(ge=0)
    has_more: bool


__all__ = [
    "ALL_EVENT_TYPES",
    "EVENT_DESCRIPTIONS",
    "DeliveryAttempt",
    "DeliveryPage",
    "DeliveryResult",
    "DispatchResult",
    "EventType",
    "FailureUpdate",
    "PendingDelivery",
    "WebhookCreate",
    "WebhookEndpoint",
    "WebhookPayload",
    "WebhookUpdate",
]
