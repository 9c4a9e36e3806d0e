"""Webhook registration, configuration and delivery history."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from leadhooks.exceptions import NotFoundError, ValidationError
from leadhooks.models import (
    ALL_EVENT_TYPES,
    EVENT_DESCRIPTIONS,
    DeliveryPage,
    WebhookCreate,
    WebhookEndpoint,
    WebhookUpdate,
)

from .url_safety import UrlSafetyValidator

if TYPE_CHECKING:
    from leadhooks.storage import WebhookStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _from_pydantic(error: PydanticValidationError) -> ValidationError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return ValidationError(field, first.get("msg", "Invalid value"))


def _validate_events(events: list[str]) -> list[str]:
    """Reject unknown event types and drop duplicates, keeping order."""
    unknown = [e for e in events if e not in ALL_EVENT_TYPES]
    if unknown:
        raise ValidationError(
            "events",
            f"Invalid event type(s): {', '.join(unknown)}. "
            f"Valid types: {', '.join(ALL_EVENT_TYPES)}",
        )
    return list(dict.fromkeys(events))


class WebhookRegistry:
    """Creates, updates and lists webhooks and their delivery history.

    Registration runs the static URL safety check (HTTPS, no private hosts)
    and validates the event subscriptions. The per-attempt DNS re-check
    happens at delivery time.

    Example:
        ```python
        registry = WebhookRegistry(store)
        webhook = await registry.create(
            WebhookCreate(
                name="Zapier",
                url="https://hooks.zapier.com/hooks/catch/123/abc",
                events=["lead.created"],
            )
        )
        page = await registry.list_deliveries(webhook.id, page=1, limit=20)
        ```
    """

    def __init__(self, store: WebhookStore, validator: UrlSafetyValidator | None = None) -> None:
        self._store = store
        self._validator = validator or UrlSafetyValidator()

    def _check_url(self, url: str) -> str:
        url = url.strip()
        check = self._validator.validate_static(url)
        if not check.valid:
            raise ValidationError("url", check.reason or "Invalid URL")
        return url

    async def create(self, data: WebhookCreate | dict[str, Any]) -> WebhookEndpoint:
        """Register a new webhook.

        Raises:
            ValidationError: If any field is invalid or the URL is unsafe.
        """
        if not isinstance(data, WebhookCreate):
            try:
                data = WebhookCreate.model_validate(data)
            except PydanticValidationError as e:
                raise _from_pydantic(e) from e

        webhook = WebhookEndpoint(
            name=data.name,
            url=self._check_url(data.url),
            events=_validate_events(data.events),
            secret=data.secret or None,
            enabled=data.enabled,
        )
        await self._store.create_webhook(webhook)

        logger.info("Webhook created: %s (%s) for %s", webhook.id, webhook.name, webhook.events)
        return webhook

    async def get(self, webhook_id: str) -> WebhookEndpoint:
        """Get a webhook by ID.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        webhook = await self._store.get_webhook(webhook_id)
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        return webhook

    async def list(self, include_disabled: bool = True) -> list[WebhookEndpoint]:
        """List webhooks, newest first."""
        return await self._store.list_webhooks(include_disabled=include_disabled)

    async def update(
        self,
        webhook_id: str,
        data: WebhookUpdate | dict[str, Any],
    ) -> WebhookEndpoint:
        """Apply a partial update.

        Only fields explicitly provided are changed; ``secret=None`` removes
        the secret. Re-enabling a disabled webhook resets its failure count.

        Raises:
            ValidationError: If no fields are given or a field is invalid.
            NotFoundError: If the webhook does not exist.
        """
        if not isinstance(data, WebhookUpdate):
            try:
                data = WebhookUpdate.model_validate(data)
            except PydanticValidationError as e:
                raise _from_pydantic(e) from e

        provided = data.model_fields_set
        if not provided:
            raise ValidationError(
                "body",
                "At least one field (name, url, events, secret, or enabled) is required",
            )

        existing = await self.get(webhook_id)

        updates: dict[str, Any] = {}
        if "name" in provided:
            if data.name is None:
                raise ValidationError("name", "Name cannot be null")
            updates["name"] = data.name
        if "url" in provided:
            if data.url is None:
                raise ValidationError("url", "URL cannot be null")
            updates["url"] = self._check_url(data.url)
        if "events" in provided:
            if data.events is None:
                raise ValidationError("events", "At least one event is required")
            updates["events"] = _validate_events(data.events)
        if "secret" in provided:
            updates["secret"] = data.secret or None
        if "enabled" in provided and data.enabled is not None:
            updates["enabled"] = data.enabled
            if data.enabled and not existing.enabled:
                updates["failure_count"] = 0

        updated = await self._store.update_webhook(webhook_id, **updates)
        if updated is None:
            raise NotFoundError("webhook", webhook_id)

        logger.info("Webhook updated: %s (%s)", webhook_id, sorted(updates))
        return updated

    async def delete(self, webhook_id: str) -> None:
        """Delete a webhook with its delivery history and pending retries.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        if not await self._store.delete_webhook(webhook_id):
            raise NotFoundError("webhook", webhook_id)
        logger.info("Webhook deleted: %s", webhook_id)

    async def list_deliveries(
        self,
        webhook_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> DeliveryPage:
        """Page through a webhook's delivery attempts, newest first.

        ``page`` is clamped to at least 1 and ``limit`` to 1..100.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        await self.get(webhook_id)

        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        offset = (page - 1) * limit

        total = await self._store.count_deliveries(webhook_id)
        deliveries = await self._store.list_deliveries(webhook_id, limit=limit, offset=offset)
        total_pages = math.ceil(total / limit) if total else 0

        return DeliveryPage(
            deliveries=deliveries,
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_more=page < total_pages,
        )

    @staticmethod
    def events() -> list[dict[str, str]]:
        """Catalog of subscribable event types with descriptions."""
        return [{"type": e, "description": EVENT_DESCRIPTIONS[e]} for e in ALL_EVENT_TYPES]


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "WebhookRegistry",
]
