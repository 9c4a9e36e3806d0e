"""Entry points the CRM calls after a lead mutation.

Each trigger formats the payload once and hands it to the dispatcher in the
background, so the CRM request returns without waiting on any endpoint.
Triggers never raise: a formatting or scheduling failure is logged and the
caller's operation is unaffected.

Example:
    ```python
    lead = await leads.create(data)
    trigger_lead_created(service.dispatcher, lead)
    return lead
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .payloads import (
    FieldChanges,
    format_lead_activity_added,
    format_lead_created,
    format_lead_deleted,
    format_lead_status_changed,
    format_lead_updated,
)

if TYPE_CHECKING:
    from leadhooks.models import DispatchResult, Lead, LeadActivity, WebhookPayload

    from .dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

DispatchTask = asyncio.Task["list[DispatchResult]"]


def _fire(
    dispatcher: WebhookDispatcher,
    build: Callable[[], WebhookPayload],
) -> DispatchTask | None:
    try:
        payload = build()
        return dispatcher.dispatch_in_background(payload.event, payload)
    except Exception as e:
        logger.error("Failed to trigger webhook event: %s", e)
        return None


def trigger_lead_created(dispatcher: WebhookDispatcher, lead: Lead) -> DispatchTask | None:
    """Dispatch lead.created for a newly created lead."""
    return _fire(dispatcher, lambda: format_lead_created(lead))


def trigger_lead_updated(
    dispatcher: WebhookDispatcher,
    lead: Lead,
    changes: FieldChanges,
) -> DispatchTask | None:
    """Dispatch lead.updated with the field -> {old, new} change map."""
    return _fire(dispatcher, lambda: format_lead_updated(lead, changes))


def trigger_lead_status_changed(
    dispatcher: WebhookDispatcher,
    lead: Lead,
    previous_status: str,
    new_status: str,
) -> DispatchTask | None:
    """Dispatch lead.status_changed."""
    return _fire(
        dispatcher,
        lambda: format_lead_status_changed(lead, previous_status, new_status),
    )


def trigger_lead_deleted(
    dispatcher: WebhookDispatcher,
    lead_id: str,
    name: str,
    email: str,
) -> DispatchTask | None:
    """Dispatch lead.deleted. Capture the lead's fields before deleting it."""
    return _fire(dispatcher, lambda: format_lead_deleted(lead_id, name, email))


def trigger_lead_activity_added(
    dispatcher: WebhookDispatcher,
    lead: Lead,
    activity: LeadActivity,
) -> DispatchTask | None:
    """Dispatch lead.activity_added."""
    return _fire(dispatcher, lambda: format_lead_activity_added(lead, activity))


__all__ = [
    "trigger_lead_activity_added",
    "trigger_lead_created",
    "trigger_lead_deleted",
    "trigger_lead_status_changed",
    "trigger_lead_updated",
]
