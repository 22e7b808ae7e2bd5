"""HTTP endpoints for alert submission, queue stats and metrics.

Endpoints:
    POST /api/webhook/{token}  submit an alert
    GET  /api/queue/stats      queue counters
    GET  /api/health           liveness
    GET  /metrics              Prometheus metrics
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING, Any, Protocol

from aiohttp import web
from prometheus_client import Counter, Gauge, generate_latest

from telehook.queue.models import Alert, Priority
from telehook.queue.scheduler import QueueFullError, QueueShuttingDownError
from telehook.server.ratelimit import ClientRateLimiter, rate_limit_middleware

if TYPE_CHECKING:
    from telehook.queue.models import QueueStatsSnapshot
    from telehook.storage.repos import TelegramBotDTO, TelegramChannelDTO, UserDTO

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 10000
IDENTIFIER_SEPARATOR = "----"
SERVICE_NAME = "telehook"


# Prometheus metrics
WEBHOOK_REQUESTS = Counter(
    "telehook_webhook_requests_total",
    "Webhook submissions by HTTP status",
    ["status"],
)

QUEUE_COUNTERS = Gauge(
    "telehook_queue_events",
    "Alert queue counters (processed, failed, retried, ...)",
    ["counter"],
)


class AlertSubmitter(Protocol):
    """Queue-side contract of the webhook handler."""

    @property
    def is_running(self) -> bool: ...

    @property
    def stats(self) -> QueueStatsSnapshot: ...

    def enqueue(self, alert: Alert) -> None: ...


class RouteStore(Protocol):
    """Lookups needed to route an incoming alert."""

    async def get_user_by_webhook_token(self, token: str) -> UserDTO | None: ...

    async def get_channel_by_identifier(
        self, user_id: int, identifier: str
    ) -> TelegramChannelDTO | None: ...

    async def get_bot_by_id(self, bot_id: int) -> TelegramBotDTO | None: ...


def split_identifier(message: str) -> tuple[str, str]:
    """Split ``"<content>\\n----\\n<identifier>"`` into its parts.

    The last separator wins, so content may itself contain ``----``.

    Returns:
        Tuple of (identifier, content). Identifier is empty when the
        message has no separator.
    """
    content, separator, identifier = message.rpartition(IDENTIFIER_SEPARATOR)
    if not separator:
        return "", message
    return identifier.strip(), content.strip()


def _parse_priority(value: Any) -> int | None:
    """Get a valid priority from the request, None if invalid."""
    if value is None or value == 0:
        return int(Priority.NORMAL)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value not in {p.value for p in Priority}:
        return None
    return value


def _error(status: int, message: str, **extra: Any) -> web.Response:
    WEBHOOK_REQUESTS.labels(status=str(status)).inc()
    return web.json_response({"error": message, **extra}, status=status)


class RelayServer:
    """aiohttp server exposing the relay's HTTP surface.

    Example:
        ```python
        server = RelayServer(queue, store, rate_limit=10)
        await server.start(port=10000)
        ...
        await server.stop()
        ```
    """

    def __init__(
        self,
        queue: AlertSubmitter,
        store: RouteStore,
        *,
        rate_limit: int | None = None,
        max_retries: int = 3,
    ) -> None:
        """Initialize the server.

        Args:
            queue: Alert queue receiving submissions.
            store: Routing lookups.
            rate_limit: Webhook requests per minute per client (None disables).
            max_retries: Retry limit given to submitted alerts.
        """
        self.queue = queue
        self.store = store
        self.max_retries = max_retries
        self.rate_limiter = ClientRateLimiter(rate_limit) if rate_limit else None

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """Handle POST /api/webhook/{token}."""
        token_str = request.match_info.get("token", "")
        try:
            token = str(uuid.UUID(token_str))
        except ValueError:
            return _error(400, "invalid webhook token format")

        user = await self.store.get_user_by_webhook_token(token)
        if user is None:
            return _error(401, "invalid webhook token")

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(400, "invalid JSON payload")
        if not isinstance(body, dict):
            return _error(400, "invalid JSON payload")

        message = body.get("message")
        if not isinstance(message, str) or not message:
            return _error(400, "message field is required")

        priority = _parse_priority(body.get("priority"))
        if priority is None:
            return _error(400, "priority must be an integer between 1 and 4")

        data = body.get("data")
        if data is not None and not isinstance(data, dict):
            return _error(400, "data must be a JSON object")

        identifier, content = split_identifier(message)
        if not identifier:
            return _error(
                400,
                "channel identifier not found. Message format: '<content>\\n----\\n<identifier>'",
            )

        channel = await self.store.get_channel_by_identifier(user.id, identifier)
        if channel is None:
            logger.info("Channel identifier %r not found for user %s", identifier, user.id)
            return _error(
                400,
                "channel identifier not found or inactive",
                identifier=identifier,
                hint="Please configure this channel identifier in your dashboard",
            )

        bot = await self.store.get_bot_by_id(channel.bot_id)
        if bot is None:
            logger.error("Bot %s not found for channel %s", channel.bot_id, channel.id)
            return _error(500, "bot configuration not found")

        payload: dict[str, Any] = {
            "message": content,
            "priority": priority,
            "identifier": identifier,
        }
        if data:
            payload["data"] = data

        alert = Alert(
            user_id=user.id,
            username=user.username,
            payload=payload,
            priority=priority,
            max_retries=self.max_retries,
            bot_token=bot.bot_token,
            channel_id=channel.channel_id,
            db_channel_id=channel.id,
        )

        try:
            self.queue.enqueue(alert)
        except QueueShuttingDownError:
            return _error(503, "alert queue is shutting down, please try again later")
        except QueueFullError:
            logger.warning("Alert queue full, rejecting alert for user %s", user.id)
            return _error(503, "alert queue is full, please try again later")

        WEBHOOK_REQUESTS.labels(status="200").inc()
        return web.json_response(
            {
                "success": True,
                "message": "alert queued successfully",
                "alert_id": alert.id,
                "channel": channel.channel_name,
                "identifier": identifier,
            }
        )

    async def _handle_stats(self, _request: web.Request) -> web.Response:
        """Handle GET /api/queue/stats."""
        return web.json_response(self.queue.stats.to_dict())

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Handle GET /api/health."""
        running = self.queue.is_running
        return web.json_response(
            {
                "status": "healthy" if running else "unhealthy",
                "service": SERVICE_NAME,
                "queue_running": running,
            },
            status=200 if running else 503,
        )

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle GET /metrics (Prometheus format)."""
        for name, value in self.queue.stats.to_dict().items():
            QUEUE_COUNTERS.labels(counter=name).set(value)

        return web.Response(
            body=generate_latest(),
            content_type="text/plain",
            charset="utf-8",
        )

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        middlewares = []
        if self.rate_limiter is not None:
            middlewares.append(rate_limit_middleware(self.rate_limiter))

        app = web.Application(middlewares=middlewares)
        app.router.add_post("/api/webhook/{token}", self._handle_webhook)
        app.router.add_get("/api/queue/stats", self._handle_stats)
        app.router.add_get("/api/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self, host: str = DEFAULT_HOST, port: int = DEFAULT_HTTP_PORT) -> None:
        """Start serving HTTP.

        Args:
            host: Address to bind.
            port: Port to listen on.
        """
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, host, port)
        await site.start()

        logger.info("HTTP server started on %s:%d", host, port)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            logger.info("HTTP server stopped")
