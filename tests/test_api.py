"""Tests for the Leadhooks REST API."""

import asyncio
from datetime import UTC, datetime

import httpx
import pytest
from conftest import HOOK_URL, SECRET, RecordingTransport, make_endpoint
from fastapi.testclient import TestClient

from leadhooks.api import create_app
from leadhooks.api.router import set_service
from leadhooks.api.schemas import TestDeliveryResponse, WebhookResponse
from leadhooks.config import Settings
from leadhooks.exceptions import StorageError
from leadhooks.models import DeliveryResult
from leadhooks.service import WebhookService
from leadhooks.storage import InMemoryWebhookStore
from leadhooks.webhooks import DeliveryExecutor


@pytest.fixture
def transport():
    """Transport standing in for every remote webhook endpoint."""
    return RecordingTransport()


@pytest.fixture
def service(validator, transport):
    """A real WebhookService over the in-memory store."""
    settings = Settings(retry_worker_enabled=False)
    return WebhookService(
        store=InMemoryWebhookStore(),
        settings=settings,
        validator=validator,
        executor=DeliveryExecutor(validator, timeout_seconds=5, transport=transport),
    )


@pytest.fixture
def test_app(service):
    """Create a test app with the service installed (no lifespan)."""
    app = create_app(Settings(retry_worker_enabled=False))
    set_service(service)
    yield app
    set_service(None)


@pytest.fixture
def client(test_app):
    """Create a test client."""
    return TestClient(test_app)


def create_webhook(client, **overrides) -> dict:
    body = {"name": "Zapier", "url": HOOK_URL, "events": ["lead.created"], "secret": SECRET}
    body.update(overrides)
    response = client.post("/api/v1/webhooks", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_when_service_initialized(self, client):
        """Should return healthy when service is ready."""
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["storage"] == "memory"
        assert data["retry_worker_running"] is False
        assert "version" in data

    def test_health_when_service_not_initialized(self):
        """Should return unhealthy when service not ready."""
        app = create_app(Settings(retry_worker_enabled=False))
        set_service(None)

        response = TestClient(app).get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["storage"] is None

    def test_service_unavailable(self):
        """Webhook routes return 503 before the service is set."""
        app = create_app(Settings(retry_worker_enabled=False))
        set_service(None)

        response = TestClient(app).get("/api/v1/webhooks")

        assert response.status_code == 503


class TestCreateWebhook:
    """Tests for POST /webhooks."""

    def test_create(self, client):
        """Should create a webhook and hide its secret."""
        data = create_webhook(client)

        assert data["id"].startswith("whk_")
        assert data["name"] == "Zapier"
        assert data["events"] == ["lead.created"]
        assert data["enabled"] is True
        assert data["failure_count"] == 0
        assert data["has_secret"] is True
        assert "secret" not in data

    def test_create_without_secret(self, client):
        data = create_webhook(client, secret=None)
        assert data["has_secret"] is False

    def test_private_url_rejected(self, client):
        """Should return 400 for a private address."""
        response = client.post(
            "/api/v1/webhooks",
            json={"name": "x", "url": "https://192.168.1.1/hook", "events": ["lead.created"]},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["field"] == "url"

    def test_http_url_rejected(self, client):
        response = client.post(
            "/api/v1/webhooks",
            json={"name": "x", "url": "http://hooks.example.com/h", "events": ["lead.created"]},
        )
        assert response.status_code == 400

    def test_unknown_event_rejected(self, client):
        """Should return 400 for an unknown event type."""
        response = client.post(
            "/api/v1/webhooks",
            json={"name": "x", "url": HOOK_URL, "events": ["deal.won"]},
        )

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "events"

    def test_request_shape_rejected(self, client):
        """Should return 422 for bodies that fail schema validation."""
        response = client.post(
            "/api/v1/webhooks",
            json={"name": "x", "url": HOOK_URL, "events": ["lead.created"], "secret": "x" * 256},
        )
        assert response.status_code == 422

        response = client.post("/api/v1/webhooks", json={"name": "x", "url": HOOK_URL})
        assert response.status_code == 422


class TestReadWebhooks:
    """Tests for GET /webhooks, /webhooks/{id} and /webhooks/events."""

    def test_list(self, client):
        create_webhook(client, name="one")
        create_webhook(client, name="two", enabled=False)

        response = client.get("/api/v1/webhooks")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert {w["name"] for w in data["webhooks"]} == {"one", "two"}
        assert all("secret" not in w for w in data["webhooks"])

    def test_list_enabled_only(self, client):
        create_webhook(client, name="one")
        create_webhook(client, name="two", enabled=False)

        response = client.get("/api/v1/webhooks", params={"include_disabled": "false"})

        assert [w["name"] for w in response.json()["webhooks"]] == ["one"]

    def test_get(self, client):
        created = create_webhook(client)

        response = client.get(f"/api/v1/webhooks/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    def test_get_not_found(self, client):
        """Should return 404 for unknown webhook."""
        response = client.get("/api/v1/webhooks/whk_missing")

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "not_found"
        assert error["resource_id"] == "whk_missing"

    def test_events(self, client):
        """Should list all five event types."""
        response = client.get("/api/v1/webhooks/events")

        assert response.status_code == 200
        types = [e["type"] for e in response.json()["events"]]
        assert types == [
            "lead.created",
            "lead.updated",
            "lead.status_changed",
            "lead.deleted",
            "lead.activity_added",
        ]


class TestUpdateWebhook:
    """Tests for PATCH /webhooks/{id}."""

    def test_update(self, client):
        created = create_webhook(client)

        response = client.patch(
            f"/api/v1/webhooks/{created['id']}",
            json={"name": "Renamed", "events": ["lead.created", "lead.deleted"]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Renamed"
        assert data["events"] == ["lead.created", "lead.deleted"]
        assert data["url"] == HOOK_URL

    def test_remove_secret(self, client):
        created = create_webhook(client)

        response = client.patch(f"/api/v1/webhooks/{created['id']}", json={"secret": None})

        assert response.json()["has_secret"] is False

    def test_empty_body(self, client):
        """Should return 400 when no field is given."""
        created = create_webhook(client)

        response = client.patch(f"/api/v1/webhooks/{created['id']}", json={})

        assert response.status_code == 400
        assert "At least one field" in response.json()["error"]["message"]

    def test_unsafe_url(self, client):
        created = create_webhook(client)
        response = client.patch(
            f"/api/v1/webhooks/{created['id']}", json={"url": "https://localhost/h"}
        )
        assert response.status_code == 400

    def test_not_found(self, client):
        response = client.patch("/api/v1/webhooks/whk_missing", json={"name": "x"})
        assert response.status_code == 404

    def test_reenable_resets_failures(self, client, service):
        """Re-enabling a disabled webhook resets its failure count."""
        created = create_webhook(client)
        for _ in range(3):
            asyncio.run(service.store.record_failure(created["id"], 500, datetime.now(UTC), 3))

        disabled = client.get(f"/api/v1/webhooks/{created['id']}").json()
        assert disabled["enabled"] is False
        assert disabled["failure_count"] == 3

        response = client.patch(f"/api/v1/webhooks/{created['id']}", json={"enabled": True})

        assert response.json()["enabled"] is True
        assert response.json()["failure_count"] == 0


class TestDeleteWebhook:
    """Tests for DELETE /webhooks/{id}."""

    def test_delete(self, client):
        created = create_webhook(client)

        response = client.delete(f"/api/v1/webhooks/{created['id']}")

        assert response.status_code == 204
        assert response.content == b""
        assert client.get(f"/api/v1/webhooks/{created['id']}").status_code == 404

    def test_delete_not_found(self, client):
        assert client.delete("/api/v1/webhooks/whk_missing").status_code == 404


class TestTestAndDeliveries:
    """Tests for POST /webhooks/{id}/test and GET /webhooks/{id}/deliveries."""

    def test_send_test(self, client, transport):
        """Should send a signed synthetic event and report the outcome."""
        created = create_webhook(client)

        response = client.post(f"/api/v1/webhooks/{created['id']}/test")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status_code"] == 200
        assert len(transport.requests) == 1
        assert "x-webhook-signature" in transport.requests[0].headers

    def test_failed_test_is_reported_not_counted(self, client, transport):
        """A failing test send is a 200 response with success false."""
        transport._handler = lambda request: httpx.Response(500, text="down")
        created = create_webhook(client)

        data = client.post(f"/api/v1/webhooks/{created['id']}/test").json()

        assert data["success"] is False
        assert data["status_code"] == 500
        webhook = client.get(f"/api/v1/webhooks/{created['id']}").json()
        assert webhook["failure_count"] == 0
        assert webhook["last_status_code"] == 500

    def test_send_test_not_found(self, client):
        assert client.post("/api/v1/webhooks/whk_missing/test").status_code == 404

    def test_deliveries(self, client):
        """Should page through logged attempts."""
        created = create_webhook(client)
        for _ in range(3):
            client.post(f"/api/v1/webhooks/{created['id']}/test")

        response = client.get(
            f"/api/v1/webhooks/{created['id']}/deliveries", params={"page": 1, "limit": 2}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert data["has_more"] is True
        assert len(data["deliveries"]) == 2
        delivery = data["deliveries"][0]
        assert delivery["success"] is True
        assert delivery["event"] == "lead.created"
        assert delivery["payload"]["data"]["lead"]["name"] == "Test Lead"

    def test_deliveries_limit_bounds(self, client):
        created = create_webhook(client)
        url = f"/api/v1/webhooks/{created['id']}/deliveries"

        assert client.get(url, params={"limit": 101}).status_code == 422
        assert client.get(url, params={"page": 0}).status_code == 422

    def test_deliveries_not_found(self, client):
        assert client.get("/api/v1/webhooks/whk_missing/deliveries").status_code == 404


class TestErrorHandling:
    """Tests for exception handler mapping."""

    def test_storage_error_is_500(self, test_app, service):
        """Other Leadhooks errors map to 500 with their code."""

        async def broken(include_disabled: bool = True):
            raise StorageError("database unavailable")

        service.registry.list = broken
        client = TestClient(test_app)

        response = client.get("/api/v1/webhooks")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "storage_error"


class TestLifespan:
    """Tests for the application lifespan."""

    def test_lifespan_installs_and_removes_service(self):
        """The service is available only while the app is running."""
        app = create_app(Settings(retry_worker_enabled=False))

        with TestClient(app) as client:
            data = client.get("/api/v1/health").json()
            assert data["status"] == "healthy"
            assert data["storage"] == "memory"

        assert TestClient(app).get("/api/v1/health").json()["status"] == "unhealthy"

    def test_lifespan_starts_retry_worker(self):
        app = create_app(Settings(retry_worker_enabled=True, retry_poll_interval_seconds=60))

        with TestClient(app) as client:
            assert client.get("/api/v1/health").json()["retry_worker_running"] is True


class TestSchemas:
    """Tests for response schema helpers."""

    def test_webhook_response_hides_secret(self):
        response = WebhookResponse.from_endpoint(make_endpoint())
        assert response.has_secret is True
        assert "secret" not in response.model_dump()

    def test_test_delivery_response(self):
        result = DeliveryResult(success=False, status_code=None, error="Request timeout")
        response = TestDeliveryResponse.from_result(result)
        assert response.success is False
        assert response.error == "Request timeout"
