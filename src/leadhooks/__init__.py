"""Leadhooks: outbound webhooks for CRM lead events.

Notifies external systems (Zapier, n8n, custom integrations) when leads are
created, updated, change status, are deleted or get a new activity. Every
delivery is HMAC-signed, checked against SSRF targets, retried on a fixed
backoff schedule and logged. Endpoints that keep failing are disabled.

Quick Start:
    from leadhooks.service import WebhookService
    from leadhooks.webhooks import trigger_lead_created

    async with WebhookService.create() as service:
        await service.registry.create(
            {
                "name": "Zapier",
                "url": "https://hooks.zapier.com/hooks/catch/123/abc",
                "events": ["lead.created", "lead.status_changed"],
                "secret": "a-long-shared-secret",
            }
        )

        # After the CRM has created a lead
        trigger_lead_created(service.dispatcher, lead)

Event Types:
    - lead.created: A new lead was added
    - lead.updated: Lead fields changed (with old/new values)
    - lead.status_changed: Pipeline status changed
    - lead.deleted: A lead was removed
    - lead.activity_added: A note, call or other activity was logged
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings

# Exceptions
from .exceptions import (
    LeadhooksError,
    NotFoundError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttempt,
    DeliveryResult,
    DispatchResult,
    Lead,
    LeadActivity,
    PendingDelivery,
    WebhookEndpoint,
    WebhookPayload,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    # Exceptions
    "LeadhooksError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    # Logging
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "Lead",
    "LeadActivity",
    "WebhookEndpoint",
    "WebhookPayload",
    "DeliveryResult",
    "DispatchResult",
    "DeliveryAttempt",
    "PendingDelivery",
]
