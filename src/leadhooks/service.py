"""Leadhooks service composition.

Wires the store, URL validator, delivery executor, failure tracker, retry
scheduler, dispatcher and registry from one Settings object.

Example:
    ```python
    from leadhooks.service import WebhookService
    from leadhooks.webhooks import trigger_lead_created

    async with WebhookService.create() as service:
        webhook = await service.registry.create(
            {"name": "Zapier", "url": "https://hooks.zapier.com/x", "events": ["lead.created"]}
        )
        trigger_lead_created(service.dispatcher, lead)
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from leadhooks.config import Settings
from leadhooks.storage import WebhookStore, create_store
from leadhooks.webhooks import (
    DeliveryExecutor,
    FailureTracker,
    RetryScheduler,
    UrlSafetyValidator,
    WebhookDispatcher,
    WebhookRegistry,
)


@dataclass
class WebhookService:
    """High-level webhook service.

    Attributes:
        store: Persistence for webhooks, deliveries and pending retries.
        settings: Configuration settings.
        validator: URL safety validator shared by registry and executor.
        executor: Performs individual delivery attempts.
        tracker: Failure counting and auto-disable.
        scheduler: Pending retry scheduling and the background poll loop.
        dispatcher: Event fan-out and test sends.
        registry: Webhook CRUD and delivery history.
    """

    store: WebhookStore
    settings: Settings
    validator: UrlSafetyValidator = field(default=None)  # type: ignore[assignment]
    executor: DeliveryExecutor = field(default=None)  # type: ignore[assignment]
    tracker: FailureTracker = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)
    dispatcher: WebhookDispatcher = field(init=False, repr=False)
    registry: WebhookRegistry = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the collaborators that depend on store and settings."""
        settings = self.settings
        if self.validator is None:
            self.validator = UrlSafetyValidator(fail_closed=settings.dns_fail_closed)
        if self.executor is None:
            self.executor = DeliveryExecutor(
                validator=self.validator,
                timeout_seconds=settings.delivery_timeout_seconds,
                max_response_bytes=settings.max_response_body_bytes,
                user_agent=settings.webhook_user_agent,
            )
        self.tracker = FailureTracker(self.store, threshold=settings.failure_threshold)
        self.scheduler = RetryScheduler(
            self.store,
            self.executor,
            self.tracker,
            batch_size=settings.retry_batch_size,
            lease_seconds=settings.retry_claim_lease_seconds,
            poll_interval_seconds=settings.retry_poll_interval_seconds,
            max_concurrent=settings.max_concurrent_deliveries,
        )
        self.dispatcher = WebhookDispatcher(
            self.store,
            self.executor,
            self.tracker,
            self.scheduler,
            max_concurrent=settings.max_concurrent_deliveries,
        )
        self.registry = WebhookRegistry(self.store, validator=self.validator)

    @classmethod
    def create(cls, settings: Settings | None = None) -> WebhookService:
        """Create a WebhookService with the store selected by settings.

        Args:
            settings: Optional settings. Uses environment if None.

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()
        return cls(store=create_store(settings), settings=settings)

    async def initialize(self) -> None:
        """Initialize the store (creates tables for SQL backends)."""
        await self.store.initialize()

    async def start_worker(self) -> None:
        """Start the background retry worker if enabled in settings."""
        if self.settings.retry_worker_enabled:
            await self.scheduler.start()

    async def close(self) -> None:
        """Stop the retry worker, let background dispatches finish, close the store."""
        await self.scheduler.stop()
        await self.dispatcher.drain()
        await self.store.close()

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()


__all__ = ["WebhookService"]
