"""Payload formatting for lead lifecycle webhook events.

Each formatter builds a fresh ``WebhookPayload`` (new id, current timestamp),
so formatting is not idempotent: format once per logical event and reuse the
result for every delivery and retry of that event.

Wire keys use camelCase (``projectType``, ``createdAt``, ``previousStatus``)
and optional lead fields are sent as ``null`` rather than omitted.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic_core import to_jsonable_python

from leadhooks.models import Lead, LeadActivity, WebhookPayload, iso_timestamp, utc_now

FieldChanges = dict[str, dict[str, Any]]


def _lead_data(lead: Lead) -> dict[str, Any]:
    """Full lead representation used by created/updated events."""
    return {
        "id": lead.id,
        "name": lead.name,
        "email": lead.email,
        "company": lead.company,
        "phone": lead.phone,
        "budget": lead.budget,
        "projectType": lead.project_type,
        "message": lead.message,
        "source": lead.source,
        "status": lead.status,
        "createdAt": iso_timestamp(lead.created_at),
    }


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value, fallback=str)


def _normalize_changes(changes: FieldChanges) -> FieldChanges:
    """Coerce a field -> {old, new} map into JSON-safe values."""
    normalized: FieldChanges = {}
    for field_name, change in (changes or {}).items():
        if not isinstance(change, Mapping):
            # A bare value is treated as the new value of the field
            change = {"old": None, "new": change}
        normalized[str(field_name)] = {
            "old": _jsonable(change.get("old")),
            "new": _jsonable(change.get("new")),
        }
    return normalized


def format_lead_created(lead: Lead) -> WebhookPayload:
    """Format a lead.created payload.

    Example:
        ```python
        payload = format_lead_created(lead)
        await dispatcher.dispatch("lead.created", payload)
        ```
    """
    return WebhookPayload(event="lead.created", data={"lead": _lead_data(lead)})


def format_lead_updated(lead: Lead, changes: FieldChanges) -> WebhookPayload:
    """Format a lead.updated payload.

    Args:
        lead: The lead after the update.
        changes: Mapping of field name to ``{"old": ..., "new": ...}``.
    """
    return WebhookPayload(
        event="lead.updated",
        data={
            "lead": _lead_data(lead),
            "changes": _normalize_changes(changes),
        },
    )


def format_lead_status_changed(
    lead: Lead,
    previous_status: str,
    new_status: str,
) -> WebhookPayload:
    """Format a lead.status_changed payload."""
    return WebhookPayload(
        event="lead.status_changed",
        data={
            "lead": {
                "id": lead.id,
                "name": lead.name,
                "email": lead.email,
                "status": lead.status,
            },
            "previousStatus": previous_status,
            "newStatus": new_status,
        },
    )


def format_lead_deleted(lead_id: str, name: str, email: str) -> WebhookPayload:
    """Format a lead.deleted payload.

    Takes plain values because the lead row is usually gone by the time the
    event is dispatched.
    """
    return WebhookPayload(
        event="lead.deleted",
        data={
            "leadId": lead_id,
            "name": name,
            "email": email,
        },
    )


def format_lead_activity_added(lead: Lead, activity: LeadActivity) -> WebhookPayload:
    """Format a lead.activity_added payload."""
    return WebhookPayload(
        event="lead.activity_added",
        data={
            "lead": {
                "id": lead.id,
                "name": lead.name,
                "email": lead.email,
            },
            "activity": {
                "id": activity.id,
                "type": activity.type,
                "description": activity.description,
                "createdAt": iso_timestamp(activity.created_at),
            },
        },
    )


def build_test_payload() -> WebhookPayload:
    """Build the synthetic lead.created payload used for test deliveries."""
    test_lead = Lead(
        id="test-lead-00000000-0000-0000-0000-000000000000",
        name="Test Lead",
        email="test@example.com",
        company="Test Company Inc",
        phone="+1-555-0123",
        budget="$10,000 - $50,000",
        project_type="Test Project",
        message="This is a test webhook delivery to verify your endpoint.",
        source="Webhook Test",
        status="new",
        created_at=utc_now(),
    )
    return format_lead_created(test_lead)


__all__ = [
    "FieldChanges",
    "build_test_payload",
    "format_lead_activity_added",
    "format_lead_created",
    "format_lead_deleted",
    "format_lead_status_changed",
    "format_lead_updated",
]
