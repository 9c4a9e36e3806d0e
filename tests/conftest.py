"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from leadhooks.models import Lead, LeadActivity, WebhookEndpoint, WebhookPayload
from leadhooks.storage import InMemoryWebhookStore
from leadhooks.webhooks import (
    DeliveryExecutor,
    FailureTracker,
    RetryScheduler,
    UrlSafetyValidator,
    WebhookDispatcher,
    WebhookRegistry,
    format_lead_created,
)

# Add tests directory to path so helpers can be imported from test modules
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

PUBLIC_ADDRESS = "93.184.216.34"
HOOK_URL = "https://hooks.example.com/leads"
SECRET = "whsec_0123456789abcdef"


async def public_resolver(hostname: str) -> list[str]:
    """Resolver that maps every hostname to a public address."""
    return [PUBLIC_ADDRESS]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served.

    ``handler`` receives the request and returns a response; by default
    every request gets a 200 with body "ok".
    """

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self._handler = handler or (lambda request: httpx.Response(200, text="ok"))
        super().__init__(self._record)

    def _record(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)


def status_transport(*statuses: int) -> RecordingTransport:
    """Transport answering with the given statuses in order (last one repeats)."""
    remaining = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        code = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(code, text=f"status {code}")

    return RecordingTransport(handler)


def make_endpoint(**overrides: Any) -> WebhookEndpoint:
    """Build a WebhookEndpoint with sensible defaults."""
    data: dict[str, Any] = {
        "name": "Zapier",
        "url": HOOK_URL,
        "events": ["lead.created"],
        "secret": SECRET,
    }
    data.update(overrides)
    return WebhookEndpoint(**data)


def make_lead(**overrides: Any) -> Lead:
    """Build a Lead with sensible defaults."""
    data: dict[str, Any] = {
        "id": "lead_1",
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "company": "Analytical Engines",
        "phone": "+44 20 7946 0000",
        "budget": "10k-25k",
        "project_type": "website",
        "message": "We need a new site.",
        "source": "contact_form",
        "status": "new",
        "created_at": datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
    }
    data.update(overrides)
    return Lead(**data)


def make_activity(**overrides: Any) -> LeadActivity:
    """Build a LeadActivity with sensible defaults."""
    data: dict[str, Any] = {
        "id": "act_1",
        "lead_id": "lead_1",
        "type": "note",
        "description": "Called back, interested.",
        "created_at": datetime(2024, 5, 2, 9, 30, tzinfo=UTC),
    }
    data.update(overrides)
    return LeadActivity(**data)


@pytest.fixture
def store() -> InMemoryWebhookStore:
    """Fresh in-memory store."""
    return InMemoryWebhookStore()


@pytest.fixture
def validator() -> UrlSafetyValidator:
    """URL validator whose DNS lookups always return a public address."""
    return UrlSafetyValidator(resolver=public_resolver)


@pytest.fixture
def lead() -> Lead:
    return make_lead()


@pytest.fixture
def payload(lead: Lead) -> WebhookPayload:
    return format_lead_created(lead)


class Harness:
    """Fully wired delivery pipeline over an in-memory store."""

    def __init__(
        self,
        store: InMemoryWebhookStore,
        validator: UrlSafetyValidator,
        transport: httpx.AsyncBaseTransport,
        threshold: int = 10,
    ) -> None:
        self.store = store
        self.transport = transport
        self.executor = DeliveryExecutor(validator, timeout_seconds=5, transport=transport)
        self.tracker = FailureTracker(store, threshold=threshold)
        self.scheduler = RetryScheduler(store, self.executor, self.tracker)
        self.dispatcher = WebhookDispatcher(store, self.executor, self.tracker, self.scheduler)
        self.registry = WebhookRegistry(store, validator)


@pytest.fixture
def harness_factory(
    store: InMemoryWebhookStore,
    validator: UrlSafetyValidator,
) -> Callable[..., Harness]:
    """Build a Harness around a given transport."""

    def factory(transport: httpx.AsyncBaseTransport, threshold: int = 10) -> Harness:
        return Harness(store, validator, transport, threshold=threshold)

    return factory
