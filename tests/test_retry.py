"""Tests for persistent retry scheduling."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import RecordingTransport, make_endpoint, status_transport

from leadhooks.exceptions import StorageError
from leadhooks.models import DeliveryResult, FailureUpdate
from leadhooks.webhooks.retry import (
    MAX_ATTEMPTS,
    RETRY_DELAYS_MS,
    RetryScheduler,
    next_retry_delay_ms,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class TestRetrySchedule:
    """Tests for the fixed delay table."""

    def test_delay_table(self):
        """Six attempts: immediate, then 1m, 5m, 30m, 2h, 24h."""
        assert RETRY_DELAYS_MS == (0, 60_000, 300_000, 1_800_000, 7_200_000, 86_400_000)
        assert MAX_ATTEMPTS == 6

    @pytest.mark.parametrize(
        ("attempt", "delay"),
        [(0, 60_000), (1, 300_000), (2, 1_800_000), (3, 7_200_000), (4, 86_400_000)],
    )
    def test_next_delay(self, attempt, delay):
        """The delay after attempt i is the table entry for i + 1."""
        assert next_retry_delay_ms(attempt) == delay

    def test_exhausted(self):
        """No delay exists after the last attempt."""
        assert next_retry_delay_ms(5) is None
        assert next_retry_delay_ms(9) is None
        assert next_retry_delay_ms(-1) is None


class TestSchedule:
    """Tests for RetryScheduler.schedule()."""

    @pytest.mark.asyncio
    async def test_persists_pending(self, harness_factory, payload):
        """A failed attempt arms the next index with the table delay."""
        h = harness_factory(RecordingTransport())
        webhook = make_endpoint()
        await h.store.create_webhook(webhook)

        pending = await h.scheduler.schedule(webhook.id, payload, attempt=0, now=T0)

        assert pending.next_attempt_index == 1
        assert pending.next_attempt_at == T0 + timedelta(minutes=1)
        assert pending.payload.id == payload.id
        assert [p.id for p in await h.store.list_pending()] == [pending.id]

    @pytest.mark.asyncio
    async def test_last_attempt_not_rescheduled(self, harness_factory, payload):
        """Nothing is armed after attempt 5."""
        h = harness_factory(RecordingTransport())

        assert await h.scheduler.schedule("whk_1", payload, attempt=5, now=T0) is None
        assert await h.store.list_pending() == []


class TestRunDue:
    """Tests for RetryScheduler.run_due()."""

    @pytest.mark.asyncio
    async def test_nothing_due(self, harness_factory, payload):
        """Entries not yet due are left alone."""
        transport = RecordingTransport()
        h = harness_factory(transport)
        webhook = make_endpoint()
        await h.store.create_webhook(webhook)
        await h.scheduler.schedule(webhook.id, payload, attempt=0, now=T0)

        assert await h.scheduler.run_due(now=T0 + timedelta(seconds=59)) == 0
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_successful_retry(self, harness_factory, payload):
        """A due retry is delivered, logged, resets failures and is removed."""
        transport = RecordingTransport()
        h = harness_factory(transport)
        webhook = make_endpoint(failure_count=1)
        await h.store.create_webhook(webhook)
        await h.scheduler.schedule(webhook.id, payload, attempt=0, now=T0)

        processed = await h.scheduler.run_due(now=T0 + timedelta(minutes=1))

        assert processed == 1
        assert len(transport.requests) == 1
        assert transport.requests[0].headers["x-webhook-id"] == payload.id
        assert await h.store.list_pending() == []
        [attempt] = await h.store.list_deliveries(webhook.id)
        assert attempt.attempt == 1
        assert attempt.payload.id == payload.id
        assert (await h.store.get_webhook(webhook.id)).failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_retry_arms_next(self, harness_factory, payload):
        """A failed retry schedules the following index."""
        h = harness_factory(status_transport(500))
        webhook = make_endpoint(failure_count=1)
        await h.store.create_webhook(webhook)
        await h.scheduler.schedule(webhook.id, payload, attempt=0, now=T0)

        now = T0 + timedelta(minutes=1)
        await h.scheduler.run_due(now=now)

        [pending] = await h.store.list_pending()
        assert pending.next_attempt_index == 2
        assert pending.next_attempt_at == now + timedelta(minutes=5)
        assert (await h.store.get_webhook(webhook.id)).failure_count == 2

    @pytest.mark.asyncio
    async def test_log_failure_still_counts_and_rearms(self, harness_factory, payload):
        """A delivery log outage does not stop counting or the next retry."""
        h = harness_factory(status_transport(500))
        webhook = make_endpoint(failure_count=1)
        await h.store.create_webhook(webhook)
        await h.scheduler.schedule(webhook.id, payload, attempt=0, now=T0)
        h.store.log_delivery = AsyncMock(side_effect=StorageError("log table locked"))

        assert await h.scheduler.run_due(now=T0 + timedelta(minutes=1)) == 1

        [pending] = await h.store.list_pending()
        assert pending.next_attempt_index == 2
        assert (await h.store.get_webhook(webhook.id)).failure_count == 2

    @pytest.mark.asyncio
    async def test_full_schedule_then_stop(self, harness_factory, payload):
        """An always-failing endpoint gets exactly six attempts in total."""
        transport = status_transport(503)
        h = harness_factory(transport)
        webhook = make_endpoint()
        await h.store.create_webhook(webhook)

        results = await h.dispatcher.dispatch("lead.created", payload)
        assert results[0].success is False

        now = datetime.now(UTC)
        for _ in range(MAX_ATTEMPTS + 2):
            now += timedelta(days=2)
            await h.scheduler.run_due(now=now)

        assert len(transport.requests) == MAX_ATTEMPTS
        assert {r.headers["x-webhook-id"] for r in transport.requests} == {payload.id}
        attempts = await h.store.list_deliveries(webhook.id, limit=100)
        assert sorted(a.attempt for a in attempts) == [0, 1, 2, 3, 4, 5]
        assert await h.store.list_pending() == []
        assert (await h.store.get_webhook(webhook.id)).failure_count == 6

    @pytest.mark.asyncio
    async def test_skips_disabled_endpoint(self, harness_factory, payload):
        """A retry for an endpoint disabled meanwhile is dropped without I/O."""
        transport = RecordingTransport()
        h = harness_factory(transport)
        webhook = make_endpoint()
        await h.store.create_webhook(webhook)
        await h.scheduler.schedule(webhook.id, payload, attempt=0, now=T0)
        await h.store.update_webhook(webhook.id, enabled=False)

        processed = await h.scheduler.run_due(now=T0 + timedelta(hours=1))

        assert processed == 1
        assert transport.requests == []
        assert await h.store.list_pending() == []
        assert await h.store.count_deliveries(webhook.id) == 0

    @pytest.mark.asyncio
    async def test_skips_deleted_endpoint(self, harness_factory, payload):
        """A retry whose endpoint no longer exists is dropped."""
        transport = RecordingTransport()
        h = harness_factory(transport)
        webhook = make_endpoint()
        await h.store.create_webhook(webhook)
        pending = await h.scheduler.schedule(webhook.id, payload, attempt=0, now=T0)
        # Bypass the cascade to simulate a row left behind
        await h.store.delete_webhook(webhook.id)
        await h.store.add_pending(pending)

        await h.scheduler.run_due(now=T0 + timedelta(hours=1))

        assert transport.requests == []
        assert await h.store.list_pending() == []

    @pytest.mark.asyncio
    async def test_no_retry_after_disable(self, harness_factory, payload):
        """The retry that disables the endpoint does not arm another one."""
        h = harness_factory(status_transport(500), threshold=3)
        webhook = make_endpoint(failure_count=2)
        await h.store.create_webhook(webhook)
        await h.scheduler.schedule(webhook.id, payload, attempt=1, now=T0)

        await h.scheduler.run_due(now=T0 + timedelta(hours=1))

        loaded = await h.store.get_webhook(webhook.id)
        assert loaded.enabled is False
        assert loaded.failure_count == 3
        assert await h.store.list_pending() == []

    @pytest.mark.asyncio
    async def test_isolates_failures(self, store, payload):
        """One crashing retry does not stop the others in the batch."""
        good = make_endpoint()
        bad = make_endpoint()
        await store.create_webhook(good)
        await store.create_webhook(bad)

        executor = AsyncMock()

        async def deliver(endpoint, p):
            if endpoint.id == bad.id:
                raise RuntimeError("boom")
            return DeliveryResult(success=True, status_code=200)

        executor.deliver.side_effect = deliver
        tracker = AsyncMock()
        tracker.record.return_value = FailureUpdate()
        scheduler = RetryScheduler(store, executor, tracker)
        await scheduler.schedule(good.id, payload, attempt=0, now=T0)
        await scheduler.schedule(bad.id, payload, attempt=0, now=T0)

        processed = await scheduler.run_due(now=T0 + timedelta(minutes=1))

        assert processed == 1
        remaining = await store.list_pending()
        assert [p.webhook_id for p in remaining] == [bad.id]
        assert remaining[0].claimed_until is not None


class TestWorkerLoop:
    """Tests for start()/stop()."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store):
        """The poll loop runs in the background until stopped."""
        executor = AsyncMock()
        tracker = AsyncMock()
        scheduler = RetryScheduler(store, executor, tracker, poll_interval_seconds=0.01)
        scheduler.run_due = AsyncMock(return_value=0)

        await scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.running is False
        assert scheduler.run_due.await_count >= 1

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, store):
        """An exception inside a poll does not kill the loop."""
        scheduler = RetryScheduler(store, AsyncMock(), AsyncMock(), poll_interval_seconds=0.01)
        scheduler.run_due = AsyncMock(side_effect=[RuntimeError("db down"), 0, 0, 0, 0, 0, 0, 0])

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.run_due.await_count >= 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, store):
        """Starting twice keeps a single loop."""
        scheduler = RetryScheduler(store, AsyncMock(), AsyncMock(), poll_interval_seconds=0.01)
        scheduler.run_due = AsyncMock(return_value=0)

        await scheduler.start()
        task = scheduler._task
        await scheduler.start()

        assert scheduler._task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, store):
        """Stopping an idle scheduler is a no-op."""
        scheduler = RetryScheduler(store, AsyncMock(), AsyncMock())
        await scheduler.stop()
        assert scheduler.running is False


def test_status_transport_helper():
    """Sanity check for the scripted transport used above."""
    transport = status_transport(500, 200)
    request = httpx.Request("POST", "https://example.com")
    assert transport.handle_request(request).status_code == 500
    assert transport.handle_request(request).status_code == 200
    assert transport.handle_request(request).status_code == 200
