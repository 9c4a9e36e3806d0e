"""Abstract webhook store.

The dispatch subsystem never touches module-level state: a ``WebhookStore``
is injected into the registry, dispatcher, failure tracker and retry
scheduler. Implementations must make ``record_failure`` and ``claim_due``
atomic so that concurrent attempts neither lose failure increments nor
process the same pending retry twice.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from leadhooks.models import (
        DeliveryAttempt,
        FailureUpdate,
        PendingDelivery,
        WebhookEndpoint,
    )


class WebhookStore(ABC):
    """Persistence for webhooks, delivery logs and pending retries.

    Example:
        ```python
        async with InMemoryWebhookStore() as store:
            await store.create_webhook(endpoint)
            hooks = await store.get_webhooks_for_event("lead.created")
        ```
    """

    async def initialize(self) -> None:
        """Prepare the store for use (create tables, open pools)."""

    async def close(self) -> None:
        """Release any resources held by the store."""

    async def __aenter__(self) -> WebhookStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Webhooks

    @abstractmethod
    async def create_webhook(self, webhook: WebhookEndpoint) -> WebhookEndpoint:
        """Persist a new webhook."""
        ...

    @abstractmethod
    async def get_webhook(self, webhook_id: str) -> WebhookEndpoint | None:
        """Get a webhook by ID, or None if it does not exist."""
        ...

    @abstractmethod
    async def list_webhooks(self, include_disabled: bool = True) -> list[WebhookEndpoint]:
        """List webhooks, newest first."""
        ...

    @abstractmethod
    async def get_webhooks_for_event(self, event_type: str) -> list[WebhookEndpoint]:
        """Get all enabled webhooks subscribed to an event type."""
        ...

    @abstractmethod
    async def update_webhook(self, webhook_id: str, **updates: Any) -> WebhookEndpoint | None:
        """Apply field updates to a webhook.

        Returns:
            The updated webhook, or None if not found.
        """
        ...

    @abstractmethod
    async def delete_webhook(self, webhook_id: str) -> bool:
        """Delete a webhook with its delivery history and pending retries.

        Returns:
            True if deleted, False if not found.
        """
        ...

    # Failure tracking

    @abstractmethod
    async def record_success(
        self,
        webhook_id: str,
        status_code: int | None,
        at: datetime,
    ) -> None:
        """Reset the failure count and record the last attempt."""
        ...

    @abstractmethod
    async def record_failure(
        self,
        webhook_id: str,
        status_code: int | None,
        at: datetime,
        threshold: int,
    ) -> FailureUpdate | None:
        """Atomically increment the failure count and disable at the threshold.

        The increment, timestamp/status update and the conditional
        ``enabled = False`` happen as one step.

        Returns:
            The new count and whether the webhook is now disabled, or None if
            the webhook no longer exists.
        """
        ...

    @abstractmethod
    async def touch(self, webhook_id: str, status_code: int | None, at: datetime) -> None:
        """Record the last attempt without touching the failure count."""
        ...

    # Delivery log

    @abstractmethod
    async def log_delivery(self, attempt: DeliveryAttempt) -> str:
        """Append a delivery attempt to the log.

        Returns:
            The attempt ID.
        """
        ...

    @abstractmethod
    async def list_deliveries(
        self,
        webhook_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """List delivery attempts for a webhook, newest first."""
        ...

    @abstractmethod
    async def count_deliveries(self, webhook_id: str) -> int:
        """Count delivery attempts for a webhook."""
        ...

    # Pending retries

    @abstractmethod
    async def add_pending(self, pending: PendingDelivery) -> str:
        """Persist a pending retry.

        Returns:
            The pending delivery ID.
        """
        ...

    @abstractmethod
    async def claim_due(
        self,
        now: datetime,
        limit: int,
        lease_until: datetime,
    ) -> list[PendingDelivery]:
        """Atomically claim pending retries due at ``now``.

        A retry is claimable when ``next_attempt_at <= now`` and it is not
        held by an unexpired lease. Claimed retries get
        ``claimed_until = lease_until`` and are returned in due order.
        """
        ...

    @abstractmethod
    async def delete_pending(self, pending_id: str) -> None:
        """Remove a pending retry once it has been processed."""
        ...

    @abstractmethod
    async def list_pending(self, webhook_id: str | None = None) -> list[PendingDelivery]:
        """List pending retries, optionally for one webhook, in due order."""
        ...
