"""Tests for the HTTP endpoints."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import test_utils, web

from telehook.queue.models import Alert, DeliveryStatus
from telehook.queue.scheduler import AlertQueue
from telehook.server.api import RelayServer, split_identifier
from telehook.storage.repos import TelegramBotDTO, TelegramChannelDTO, UserDTO

TOKEN = "3f1c2a9e-7b4d-4c8e-9a1f-5d6e7f8a9b0c"
WEBHOOK = f"/api/webhook/{TOKEN}"

# ============================================================================
# Fixtures
# ============================================================================


class NullProcessor:
    async def process_alert(self, alert: Alert) -> DeliveryStatus:
        return DeliveryStatus.SUCCESS

    async def process_batch(self, alerts: Any) -> None:
        return None


@pytest.fixture
def store() -> MagicMock:
    """Create a store double with one user, channel and bot."""
    store = MagicMock()
    store.get_user_by_webhook_token = AsyncMock(
        return_value=UserDTO(id=1, username="ops", email="ops@example.com", webhook_token=TOKEN)
    )
    store.get_channel_by_identifier = AsyncMock(
        return_value=TelegramChannelDTO(
            id=3,
            user_id=1,
            bot_id=2,
            identifier="alerts",
            channel_id="-100123",
            channel_name="Alerts",
            is_active=True,
        )
    )
    store.get_bot_by_id = AsyncMock(
        return_value=TelegramBotDTO(
            id=2, user_id=1, bot_token="123:abc", bot_username=None, is_default=True
        )
    )
    return store


@pytest.fixture
def queue() -> AlertQueue:
    return AlertQueue(NullProcessor(), workers=1, queue_size=5)


@pytest.fixture
def server(queue: AlertQueue, store: MagicMock) -> RelayServer:
    return RelayServer(queue, store)


@pytest.fixture
def app(server: RelayServer) -> web.Application:
    """Create the aiohttp application."""
    return server.create_app()


def queued(queue: AlertQueue) -> Alert:
    """Pop the single alert waiting in an unstarted queue."""
    item = queue._queue.get_nowait()
    assert isinstance(item, Alert)
    return item


# ============================================================================
# split_identifier
# ============================================================================


class TestSplitIdentifier:
    """Tests for routing identifier parsing."""

    def test_basic(self) -> None:
        assert split_identifier("disk full\n----\nalerts") == ("alerts", "disk full")

    def test_last_separator_wins(self) -> None:
        assert split_identifier("a ---- b\n----\nops") == ("ops", "a ---- b")

    def test_strips_whitespace(self) -> None:
        assert split_identifier("  hi  ----  ops \n") == ("ops", "hi")

    def test_no_separator(self) -> None:
        assert split_identifier("just text") == ("", "just text")

    def test_empty_identifier(self) -> None:
        assert split_identifier("text\n----\n   ") == ("", "text")


# ============================================================================
# Webhook endpoint
# ============================================================================


class TestWebhookEndpoint:
    """Tests for POST /api/webhook/{token}."""

    async def test_success(
        self, app: web.Application, queue: AlertQueue, store: MagicMock
    ) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(
                WEBHOOK,
                json={"message": "disk full\n----\nalerts", "priority": 1, "data": {"host": "db1"}},
            )
            assert resp.status == 200
            data = await resp.json()

        assert data["success"] is True
        assert data["message"] == "alert queued successfully"
        assert data["channel"] == "Alerts"
        assert data["identifier"] == "alerts"

        alert = queued(queue)
        assert data["alert_id"] == alert.id
        assert alert.user_id == 1
        assert alert.username == "ops"
        assert alert.priority == 1
        assert alert.bot_token == "123:abc"
        assert alert.channel_id == "-100123"
        assert alert.db_channel_id == 3
        assert alert.payload == {
            "message": "disk full",
            "priority": 1,
            "identifier": "alerts",
            "data": {"host": "db1"},
        }
        store.get_channel_by_identifier.assert_awaited_once_with(1, "alerts")

    async def test_default_priority(self, app: web.Application, queue: AlertQueue) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "hi\n----\nalerts"})
            assert resp.status == 200

        assert queued(queue).priority == 3

    async def test_invalid_token_format(self, app: web.Application) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post("/api/webhook/not-a-uuid", json={"message": "x"})
            assert resp.status == 400
            assert (await resp.json())["error"] == "invalid webhook token format"

    async def test_unknown_token(self, app: web.Application, store: MagicMock) -> None:
        store.get_user_by_webhook_token.return_value = None

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "x\n----\nalerts"})
            assert resp.status == 401

    async def test_invalid_json(self, app: web.Application) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(
                WEBHOOK, data="{not json", headers={"Content-Type": "application/json"}
            )
            assert resp.status == 400
            assert (await resp.json())["error"] == "invalid JSON payload"

    async def test_non_object_body(self, app: web.Application) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json=["message"])
            assert resp.status == 400

    @pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": 5}])
    async def test_missing_message(self, app: web.Application, body: dict[str, Any]) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json=body)
            assert resp.status == 400
            assert (await resp.json())["error"] == "message field is required"

    @pytest.mark.parametrize("priority", [5, -1, "high", 2.5, True])
    async def test_invalid_priority(self, app: web.Application, priority: Any) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(
                WEBHOOK, json={"message": "x\n----\nalerts", "priority": priority}
            )
            assert resp.status == 400
            assert "priority" in (await resp.json())["error"]

    async def test_invalid_data(self, app: web.Application) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "x\n----\nalerts", "data": [1]})
            assert resp.status == 400

    async def test_missing_identifier(self, app: web.Application) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "no routing here"})
            assert resp.status == 400
            assert "channel identifier not found" in (await resp.json())["error"]

    async def test_unknown_identifier(self, app: web.Application, store: MagicMock) -> None:
        store.get_channel_by_identifier.return_value = None

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "x\n----\nnope"})
            assert resp.status == 400
            data = await resp.json()

        assert data["identifier"] == "nope"
        assert "hint" in data

    async def test_missing_bot(self, app: web.Application, store: MagicMock) -> None:
        store.get_bot_by_id.return_value = None

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "x\n----\nalerts"})
            assert resp.status == 500

    async def test_queue_full(self, app: web.Application, queue: AlertQueue) -> None:
        for i in range(queue.queue_size):
            queue.enqueue(Alert(user_id=9, payload={"message": str(i)}))

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "x\n----\nalerts"})
            assert resp.status == 503
            assert (await resp.json())["error"] == "alert queue is full, please try again later"

    async def test_queue_shutting_down(self, app: web.Application, queue: AlertQueue) -> None:
        queue.start()
        await queue.stop()

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post(WEBHOOK, json={"message": "x\n----\nalerts"})
            assert resp.status == 503
            assert "shutting down" in (await resp.json())["error"]


# ============================================================================
# Stats, health and metrics
# ============================================================================


class TestStatusEndpoints:
    """Tests for the read-only endpoints."""

    async def test_queue_stats(self, app: web.Application, queue: AlertQueue) -> None:
        queue.enqueue(Alert(user_id=1, payload={"message": "x"}))

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/api/queue/stats")
            assert resp.status == 200
            data = await resp.json()

        assert data["current_size"] == 1
        assert set(data) >= {"processed", "failed", "retried", "batched", "current_size"}

    async def test_health_running(self, app: web.Application, queue: AlertQueue) -> None:
        queue.start()
        try:
            async with test_utils.TestClient(test_utils.TestServer(app)) as client:
                resp = await client.get("/api/health")
                assert resp.status == 200
                assert (await resp.json())["status"] == "healthy"
        finally:
            await queue.stop()

    async def test_health_stopped(self, app: web.Application) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/api/health")
            assert resp.status == 503
            assert (await resp.json())["queue_running"] is False

    async def test_metrics(self, app: web.Application) -> None:
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            await client.post("/api/webhook/bad", json={})
            resp = await client.get("/metrics")
            assert resp.status == 200
            assert "text/plain" in resp.headers.get("Content-Type", "")
            text = await resp.text()

        assert "telehook_queue_events" in text
        assert "telehook_webhook_requests_total" in text


# ============================================================================
# Server lifecycle and rate limiting
# ============================================================================


class TestRelayServer:
    """Tests for serving and the per-client limit."""

    async def test_rate_limited(self, queue: AlertQueue, store: MagicMock) -> None:
        server = RelayServer(queue, store, rate_limit=2)

        async with test_utils.TestClient(test_utils.TestServer(server.create_app())) as client:
            statuses = []
            for _ in range(3):
                resp = await client.post(WEBHOOK, json={"message": "x\n----\nalerts"})
                statuses.append(resp.status)

            stats = await client.get("/api/queue/stats")

        assert statuses == [200, 200, 429]
        assert stats.status == 200

    async def test_no_rate_limit_by_default(self, server: RelayServer) -> None:
        assert server.rate_limiter is None

    async def test_start_stop(self, server: RelayServer) -> None:
        await server.start(host="127.0.0.1", port=18090)
        assert server._runner is not None

        await server.start(host="127.0.0.1", port=18090)

        await server.stop()
        assert server._runner is None

    async def test_stop_when_not_started(self, server: RelayServer) -> None:
        await server.stop()
