"""Persistent retry scheduling for failed webhook deliveries.

A failed attempt at index ``i`` arms a ``PendingDelivery`` for index ``i + 1``
that becomes due ``RETRY_DELAYS_MS[i + 1]`` later. Pending deliveries live in
the store, so they survive the request that created them and (with the SQL
store) a process restart. A poll loop claims due entries under a lease and
runs them:

    attempt 0 (initial) -> +1m -> +5m -> +30m -> +2h -> +24h

Every retry re-reads the endpoint first and is dropped if the endpoint was
deleted or disabled in the meantime. The same payload, including its ``id``,
is sent on every attempt.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from leadhooks.logging import bind_context, unbind_context
from leadhooks.models import DeliveryAttempt, PendingDelivery, utc_now

if TYPE_CHECKING:
    from leadhooks.models import WebhookPayload
    from leadhooks.storage import WebhookStore

    from .delivery import DeliveryExecutor
    from .failures import FailureTracker

logger = structlog.get_logger(__name__)

# Delay before each attempt, indexed by attempt number (0 = initial delivery)
RETRY_DELAYS_MS: tuple[int, ...] = (
    0,
    60_000,  # 1 minute
    300_000,  # 5 minutes
    1_800_000,  # 30 minutes
    7_200_000,  # 2 hours
    86_400_000,  # 24 hours
)

MAX_ATTEMPTS = len(RETRY_DELAYS_MS)


def next_retry_delay_ms(attempt: int) -> int | None:
    """Delay before the attempt that follows ``attempt``, or None if exhausted.

    Examples:
        >>> next_retry_delay_ms(0)
        60000
        >>> next_retry_delay_ms(5) is None
        True
    """
    next_index = attempt + 1
    if attempt < 0 or next_index >= MAX_ATTEMPTS:
        return None
    return RETRY_DELAYS_MS[next_index]


class RetryScheduler:
    """Arms and executes retries for failed deliveries.

    Example:
        ```python
        scheduler = RetryScheduler(store, executor, tracker)
        await scheduler.schedule(webhook.id, payload, attempt=0)

        await scheduler.start()  # background poll loop
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        store: WebhookStore,
        executor: DeliveryExecutor,
        tracker: FailureTracker,
        batch_size: int = 100,
        lease_seconds: int = 300,
        poll_interval_seconds: float = 5.0,
        max_concurrent: int = 10,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Store holding pending deliveries.
            executor: Performs each retry attempt.
            tracker: Records each retry's outcome.
            batch_size: Maximum pending deliveries claimed per poll.
            lease_seconds: How long a claimed entry stays invisible to others.
            poll_interval_seconds: Sleep between polls in the background loop.
            max_concurrent: Maximum retries in flight within one poll.
        """
        self._store = store
        self._executor = executor
        self._tracker = tracker
        self._batch_size = batch_size
        self._lease = timedelta(seconds=lease_seconds)
        self._poll_interval = poll_interval_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def schedule(
        self,
        webhook_id: str,
        payload: WebhookPayload,
        attempt: int,
        now: datetime | None = None,
    ) -> PendingDelivery | None:
        """Arm the retry that follows a failed attempt.

        Args:
            webhook_id: Endpoint to retry.
            payload: Payload to resend unchanged.
            attempt: Index of the attempt that just failed.
            now: Reference time for the delay (defaults to now).

        Returns:
            The persisted PendingDelivery, or None once the schedule is
            exhausted.
        """
        delay_ms = next_retry_delay_ms(attempt)
        if delay_ms is None:
            logger.warning(
                "Webhook retries exhausted",
                webhook_id=webhook_id,
                payload_id=payload.id,
                attempts=attempt + 1,
            )
            return None

        now = now or utc_now()
        pending = PendingDelivery(
            webhook_id=webhook_id,
            payload=payload,
            next_attempt_index=attempt + 1,
            next_attempt_at=now + timedelta(milliseconds=delay_ms),
        )
        await self._store.add_pending(pending)

        logger.info(
            "Webhook scheduled for retry",
            webhook_id=webhook_id,
            payload_id=payload.id,
            attempt=pending.next_attempt_index,
            next_attempt_at=pending.next_attempt_at.isoformat(),
        )
        return pending

    async def run_due(self, now: datetime | None = None) -> int:
        """Claim and execute every retry that is due.

        Args:
            now: Reference time (defaults to now).

        Returns:
            Number of pending deliveries processed.
        """
        now = now or utc_now()
        claimed = await self._store.claim_due(now, self._batch_size, now + self._lease)
        if not claimed:
            return 0

        results = await asyncio.gather(
            *(self._run_one(pending, now) for pending in claimed),
            return_exceptions=True,
        )

        processed = 0
        for pending, result in zip(claimed, results, strict=True):
            if isinstance(result, Exception):
                # Entry stays claimed and is picked up again when the lease expires
                logger.error(
                    "Webhook retry failed",
                    pending_id=pending.id,
                    webhook_id=pending.webhook_id,
                    error=str(result),
                )
            else:
                processed += 1
        return processed

    async def _run_one(self, pending: PendingDelivery, now: datetime) -> None:
        bind_context(webhook_id=pending.webhook_id, payload_id=pending.payload.id)
        try:
            async with self._semaphore:
                await self._execute(pending, now)
        finally:
            unbind_context("webhook_id", "payload_id")

    async def _execute(self, pending: PendingDelivery, now: datetime) -> None:
        endpoint = await self._store.get_webhook(pending.webhook_id)
        if endpoint is None or not endpoint.enabled:
            logger.info(
                "Skipping retry for missing or disabled webhook",
                attempt=pending.next_attempt_index,
            )
            await self._store.delete_pending(pending.id)
            return

        result = await self._executor.deliver(endpoint, pending.payload)
        attempt = DeliveryAttempt.from_result(
            endpoint.id,
            pending.payload,
            result,
            attempt=pending.next_attempt_index,
        )
        try:
            await self._store.log_delivery(attempt)
        except Exception as e:
            logger.error("Failed to log webhook retry", attempt=attempt.attempt, error=str(e))

        disabled = False
        try:
            disabled = (await self._tracker.record(endpoint.id, result)).disabled
        except Exception as e:
            logger.error("Failed to record webhook outcome", error=str(e))

        if not result.success and not disabled:
            await self.schedule(endpoint.id, pending.payload, pending.next_attempt_index, now=now)

        await self._store.delete_pending(pending.id)

    async def start(self) -> None:
        """Start the background poll loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop(), name="leadhooks-retry-worker")
        logger.info("Webhook retry worker started", poll_interval=self._poll_interval)

    async def stop(self) -> None:
        """Stop the background poll loop and wait for it to exit."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Webhook retry worker stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.run_due()
            except Exception as e:
                logger.error("Webhook retry poll failed", error=str(e))
            await asyncio.sleep(self._poll_interval)


__all__ = [
    "MAX_ATTEMPTS",
    "RETRY_DELAYS_MS",
    "RetryScheduler",
    "next_retry_delay_ms",
]
