"""Models for Leadhooks.

Webhook Types:
    - WebhookEndpoint: A registered target with failure tracking state
    - WebhookPayload: The signed event envelope sent on the wire
    - DeliveryAttempt: Immutable log of one attempt
    - PendingDelivery: Persisted retry awaiting its backoff delay

CRM Types:
    - Lead, LeadActivity: Entities the payload formatter reads
"""

from .base import generate_id, iso_timestamp, utc_now
from .lead import Lead, LeadActivity
from .webhook import (
    ALL_EVENT_TYPES,
    EVENT_DESCRIPTIONS,
    DeliveryAttempt,
    DeliveryPage,
    DeliveryResult,
    DispatchResult,
    EventType,
    FailureUpdate,
    PendingDelivery,
    WebhookCreate,
    WebhookEndpoint,
    WebhookPayload,
    WebhookUpdate,
)

__all__ = [
    "ALL_EVENT_TYPES",
    "EVENT_DESCRIPTIONS",
    "DeliveryAttempt",
    "DeliveryPage",
    "DeliveryResult",
    "DispatchResult",
    "EventType",
    "FailureUpdate",
    "Lead",
    "LeadActivity",
    "PendingDelivery",
    "WebhookCreate",
    "WebhookEndpoint",
    "WebhookPayload",
    "WebhookUpdate",
    "generate_id",
    "iso_timestamp",
    "utc_now",
]
