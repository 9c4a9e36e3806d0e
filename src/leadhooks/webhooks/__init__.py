"""Webhook dispatch for CRM lead events.

Provides signed, SSRF-checked delivery with persistent retries and automatic
disabling of endpoints that keep failing.

Example:
    ```python
    from leadhooks.webhooks import WebhookDispatcher, format_lead_created

    payload = format_lead_created(lead)
    results = await dispatcher.dispatch("lead.created", payload)

    # Receivers verify the X-Webhook-Signature header
    from leadhooks.webhooks import verify
    assert verify(raw_body, request.headers["X-Webhook-Signature"], secret)
    ```
"""

from .delivery import DeliveryExecutor, build_headers
from .dispatcher import WebhookDispatcher
from .failures import FailureTracker
from .payloads import (
    build_test_payload,
    format_lead_activity_added,
    format_lead_created,
    format_lead_deleted,
    format_lead_status_changed,
    format_lead_updated,
)
from .registry import WebhookRegistry
from .retry import RETRY_DELAYS_MS, RetryScheduler, next_retry_delay_ms
from .signing import sign, verify
from .triggers import (
    trigger_lead_activity_added,
    trigger_lead_created,
    trigger_lead_deleted,
    trigger_lead_status_changed,
    trigger_lead_updated,
)
from .url_safety import UrlCheck, UrlSafetyValidator, is_private_address, validate_url

__all__ = [
    "RETRY_DELAYS_MS",
    "DeliveryExecutor",
    "FailureTracker",
    "RetryScheduler",
    "UrlCheck",
    "UrlSafetyValidator",
    "WebhookDispatcher",
    "WebhookRegistry",
    "build_headers",
    "build_test_payload",
    "format_lead_activity_added",
    "format_lead_created",
    "format_lead_deleted",
    "format_lead_status_changed",
    "format_lead_updated",
    "is_private_address",
    "next_retry_delay_ms",
    "sign",
    "trigger_lead_activity_added",
    "trigger_lead_created",
    "trigger_lead_deleted",
    "trigger_lead_status_changed",
    "trigger_lead_updated",
    "validate_url",
    "verify",
]
