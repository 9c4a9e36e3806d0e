"""Consecutive-failure tracking and automatic endpoint disabling."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from leadhooks.models import FailureUpdate, utc_now

if TYPE_CHECKING:
    from leadhooks.models import DeliveryResult
    from leadhooks.storage import WebhookStore

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 10


class FailureTracker:
    """Maintains an endpoint's consecutive failure count.

    A success resets the count to zero. A failure increments it through the
    store's atomic ``record_failure``, which also disables the endpoint once
    the count reaches ``threshold``. Every attempt (initial or retry) counts.
    """

    def __init__(self, store: WebhookStore, threshold: int = DEFAULT_FAILURE_THRESHOLD) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._store = store
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    async def record(
        self,
        webhook_id: str,
        result: DeliveryResult,
        at: datetime | None = None,
    ) -> FailureUpdate:
        """Record one attempt's outcome against the endpoint.

        Args:
            webhook_id: Endpoint the attempt was made to.
            result: Outcome of the attempt.
            at: Attempt time (defaults to now).

        Returns:
            FailureUpdate with the new count and whether this attempt
            disabled the endpoint. A deleted endpoint yields a zero update.
        """
        at = at or utc_now()

        if result.success:
            await self._store.record_success(webhook_id, result.status_code, at)
            return FailureUpdate(disabled=False, failure_count=0)

        update = await self._store.record_failure(
            webhook_id,
            result.status_code,
            at,
            self._threshold,
        )
        if update is None:
            logger.debug("Failure recorded for unknown webhook %s", webhook_id)
            return FailureUpdate()

        if update.disabled:
            logger.warning(
                "Webhook %s disabled after %d consecutive failures",
                webhook_id,
                update.failure_count,
            )
        return update

    async def touch(
        self,
        webhook_id: str,
        result: DeliveryResult,
        at: datetime | None = None,
    ) -> None:
        """Update last-triggered time and status without counting the attempt."""
        await self._store.touch(webhook_id, result.status_code, at or utc_now())


__all__ = [
    "DEFAULT_FAILURE_THRESHOLD",
    "FailureTracker",
]
