"""Fan-out of lead events to subscribed webhooks.

For each event the dispatcher loads every enabled endpoint subscribed to it
and delivers the same payload to all of them concurrently. Per endpoint:

1. One delivery attempt (index 0)
2. The attempt is appended to the delivery log
3. The failure tracker records the outcome
4. On failure, the retry for index 1 is armed unless the endpoint was just
   disabled

A slow, failing or crashing endpoint never affects the others, and nothing
in this module raises into the code that produced the event.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from leadhooks.logging import bind_context, unbind_context
from leadhooks.models import DeliveryAttempt, DeliveryResult, DispatchResult

from .payloads import build_test_payload

if TYPE_CHECKING:
    from leadhooks.models import EventType, WebhookEndpoint, WebhookPayload
    from leadhooks.storage import WebhookStore

    from .delivery import DeliveryExecutor
    from .failures import FailureTracker
    from .retry import RetryScheduler

logger = structlog.get_logger(__name__)


class WebhookDispatcher:
    """Dispatches webhook events to registered endpoints.

    Example:
        ```python
        dispatcher = WebhookDispatcher(store, executor, tracker, scheduler)

        # Wait for every endpoint's first attempt
        results = await dispatcher.dispatch("lead.created", payload)

        # Or fire and forget from a request handler
        dispatcher.dispatch_in_background("lead.created", payload)
        ```
    """

    def __init__(
        self,
        store: WebhookStore,
        executor: DeliveryExecutor,
        tracker: FailureTracker,
        scheduler: RetryScheduler,
        max_concurrent: int = 10,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Store for endpoints and the delivery log.
            executor: Performs each delivery attempt.
            tracker: Records attempt outcomes against endpoints.
            scheduler: Arms retries for failed initial attempts.
            max_concurrent: Maximum concurrent deliveries.
        """
        self._store = store
        self._executor = executor
        self._tracker = tracker
        self._scheduler = scheduler
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._background: set[asyncio.Task[list[DispatchResult]]] = set()

    @property
    def pending_tasks(self) -> int:
        """Number of background dispatches still running."""
        return len(self._background)

    async def dispatch(self, event: EventType, payload: WebhookPayload) -> list[DispatchResult]:
        """Deliver an event to every enabled subscriber.

        Args:
            event: Event type being dispatched.
            payload: Payload to send (must carry the same event type).

        Returns:
            One DispatchResult per subscribed endpoint, in subscription order.
            Empty when nothing subscribes or the endpoints cannot be loaded.
        """
        try:
            endpoints = await self._store.get_webhooks_for_event(event)
        except Exception as e:
            logger.error("Failed to load webhooks for event", webhook_event=event, error=str(e))
            return []

        if not endpoints:
            logger.debug("No webhooks subscribed to event", webhook_event=event)
            return []

        results = await asyncio.gather(
            *(self._deliver_to_webhook(endpoint, payload) for endpoint in endpoints),
            return_exceptions=True,
        )

        dispatch_results: list[DispatchResult] = []
        for endpoint, result in zip(endpoints, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Webhook dispatch failed",
                    webhook_id=endpoint.id,
                    payload_id=payload.id,
                    error=str(result),
                )
                dispatch_results.append(
                    DispatchResult(
                        webhook_id=endpoint.id,
                        success=False,
                        error=f"Unexpected error: {result}",
                    )
                )
            else:
                dispatch_results.append(result)

        logger.info(
            "Webhook event dispatched",
            webhook_event=event,
            payload_id=payload.id,
            endpoints=len(dispatch_results),
            succeeded=sum(1 for r in dispatch_results if r.success),
        )
        return dispatch_results

    def dispatch_in_background(
        self,
        event: EventType,
        payload: WebhookPayload,
    ) -> asyncio.Task[list[DispatchResult]]:
        """Schedule ``dispatch`` without waiting for it.

        The task is referenced until it finishes so it cannot be garbage
        collected mid-flight. Must be called from a running event loop.
        """
        task = asyncio.create_task(self.dispatch(event, payload))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for all background dispatches to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _deliver_to_webhook(
        self,
        endpoint: WebhookEndpoint,
        payload: WebhookPayload,
    ) -> DispatchResult:
        bind_context(webhook_id=endpoint.id, payload_id=payload.id)
        try:
            async with self._semaphore:
                result = await self._executor.deliver(endpoint, payload)

            await self._log_attempt(
                DeliveryAttempt.from_result(endpoint.id, payload, result, attempt=0)
            )

            disabled = False
            try:
                disabled = (await self._tracker.record(endpoint.id, result)).disabled
            except Exception as e:
                logger.error("Failed to record webhook outcome", error=str(e))

            if not result.success and not disabled:
                await self._scheduler.schedule(endpoint.id, payload, attempt=0)

            return DispatchResult(webhook_id=endpoint.id, **result.model_dump())
        finally:
            unbind_context("webhook_id", "payload_id")

    async def _log_attempt(self, attempt: DeliveryAttempt) -> None:
        # A lost log row must not stop failure counting or retries
        try:
            await self._store.log_delivery(attempt)
        except Exception as e:
            logger.error("Failed to log webhook delivery", attempt=attempt.attempt, error=str(e))

    async def send_test(self, webhook_id: str) -> DeliveryResult | None:
        """Send a synthetic lead.created payload to one endpoint.

        The attempt is logged and updates the endpoint's last-triggered time
        and status, but it never changes the failure count and never arms a
        retry. Disabled endpoints can be tested.

        Args:
            webhook_id: Endpoint to test.

        Returns:
            The attempt's DeliveryResult, or None if the endpoint does not exist.
            A failure to load the endpoint is reported as a failed result.
        """
        try:
            endpoint = await self._store.get_webhook(webhook_id)
        except Exception as e:
            logger.error("Failed to load webhook for test", webhook_id=webhook_id, error=str(e))
            return DeliveryResult(success=False, error=f"Unexpected error: {e}")
        if endpoint is None:
            return None

        payload = build_test_payload()
        result = await self._executor.deliver(endpoint, payload)

        await self._log_attempt(
            DeliveryAttempt.from_result(endpoint.id, payload, result, attempt=0)
        )
        try:
            await self._tracker.touch(endpoint.id, result)
        except Exception as e:
            logger.error(
                "Failed to update webhook after test", webhook_id=endpoint.id, error=str(e)
            )

        logger.info(
            "Webhook test sent",
            webhook_id=endpoint.id,
            success=result.success,
            status_code=result.status_code,
        )
        return result


__all__ = ["WebhookDispatcher"]
