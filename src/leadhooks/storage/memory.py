"""In-process webhook store.

Used when no database URL is configured and throughout the test suite.
All mutations run under a single ``asyncio.Lock``, which makes the
read-modify-write in ``record_failure`` and ``claim_due`` atomic within
one event loop. Nothing survives a restart.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from leadhooks.models import (
    DeliveryAttempt,
    FailureUpdate,
    PendingDelivery,
    WebhookEndpoint,
    utc_now,
)

from .base import WebhookStore


class InMemoryWebhookStore(WebhookStore):
    """Dictionary-backed WebhookStore."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._webhooks: dict[str, WebhookEndpoint] = {}
        self._deliveries: dict[str, list[DeliveryAttempt]] = {}
        self._pending: dict[str, PendingDelivery] = {}

    async def create_webhook(self, webhook: WebhookEndpoint) -> WebhookEndpoint:
        async with self._lock:
            self._webhooks[webhook.id] = webhook.model_copy(deep=True)
            self._deliveries.setdefault(webhook.id, [])
        return webhook

    async def get_webhook(self, webhook_id: str) -> WebhookEndpoint | None:
        webhook = self._webhooks.get(webhook_id)
        return webhook.model_copy(deep=True) if webhook else None

    async def list_webhooks(self, include_disabled: bool = True) -> list[WebhookEndpoint]:
        webhooks = [
            w.model_copy(deep=True)
            for w in self._webhooks.values()
            if include_disabled or w.enabled
        ]
        webhooks.sort(key=lambda w: w.created_at, reverse=True)
        return webhooks

    async def get_webhooks_for_event(self, event_type: str) -> list[WebhookEndpoint]:
        enabled = await self.list_webhooks(include_disabled=False)
        return [w for w in enabled if w.subscribes_to(event_type)]

    async def update_webhook(self, webhook_id: str, **updates: Any) -> WebhookEndpoint | None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return None
            updates.setdefault("updated_at", utc_now())
            # model_validate re-runs field validation on the merged record
            merged = WebhookEndpoint.model_validate({**webhook.model_dump(), **updates})
            self._webhooks[webhook_id] = merged
            return merged.model_copy(deep=True)

    async def delete_webhook(self, webhook_id: str) -> bool:
        async with self._lock:
            if self._webhooks.pop(webhook_id, None) is None:
                return False
            self._deliveries.pop(webhook_id, None)
            for pending_id in [p.id for p in self._pending.values() if p.webhook_id == webhook_id]:
                del self._pending[pending_id]
            return True

    async def record_success(
        self,
        webhook_id: str,
        status_code: int | None,
        at: datetime,
    ) -> None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return
            webhook.failure_count = 0
            webhook.last_triggered_at = at
            webhook.last_status_code = status_code
            webhook.updated_at = at

    async def record_failure(
        self,
        webhook_id: str,
        status_code: int | None,
        at: datetime,
        threshold: int,
    ) -> FailureUpdate | None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return None
            webhook.failure_count += 1
            webhook.last_triggered_at = at
            webhook.last_status_code = status_code
            webhook.updated_at = at
            disabled = webhook.failure_count >= threshold
            if disabled:
                webhook.enabled = False
            return FailureUpdate(disabled=disabled, failure_count=webhook.failure_count)

    async def touch(self, webhook_id: str, status_code: int | None, at: datetime) -> None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return
            webhook.last_triggered_at = at
            webhook.last_status_code = status_code
            webhook.updated_at = at

    async def log_delivery(self, attempt: DeliveryAttempt) -> str:
        async with self._lock:
            # Attempts for a deleted webhook are dropped, matching the SQL cascade
            if attempt.webhook_id in self._webhooks:
                self._deliveries.setdefault(attempt.webhook_id, []).append(attempt)
        return attempt.id

    async def list_deliveries(
        self,
        webhook_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        attempts = sorted(
            self._deliveries.get(webhook_id, []),
            key=lambda a: a.attempted_at,
            reverse=True,
        )
        return attempts[offset : offset + limit]

    async def count_deliveries(self, webhook_id: str) -> int:
        return len(self._deliveries.get(webhook_id, []))

    async def add_pending(self, pending: PendingDelivery) -> str:
        async with self._lock:
            self._pending[pending.id] = pending.model_copy(deep=True)
        return pending.id

    async def claim_due(
        self,
        now: datetime,
        limit: int,
        lease_until: datetime,
    ) -> list[PendingDelivery]:
        async with self._lock:
            due = sorted(
                (
                    p
                    for p in self._pending.values()
                    if p.next_attempt_at <= now
                    and (p.claimed_until is None or p.claimed_until <= now)
                ),
                key=lambda p: p.next_attempt_at,
            )[:limit]
            for pending in due:
                pending.claimed_until = lease_until
            return [p.model_copy(deep=True) for p in due]

    async def delete_pending(self, pending_id: str) -> None:
        async with self._lock:
            self._pending.pop(pending_id, None)

    async def list_pending(self, webhook_id: str | None = None) -> list[PendingDelivery]:
        pending = [
            p.model_copy(deep=True)
            for p in self._pending.values()
            if webhook_id is None or p.webhook_id == webhook_id
        ]
        pending.sort(key=lambda p: p.next_attempt_at)
        return pending
