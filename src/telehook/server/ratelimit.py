"""Per-client request limiting for the webhook endpoint."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Awaitable, Callable

from aiohttp import web

from telehook.queue.throttle import DEFAULT_WINDOW_SECONDS, ThrottleCounter

logger = logging.getLogger(__name__)

WEBHOOK_PATH_PREFIX = "/api/webhook/"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class ClientRateLimiter:
    """Fixed-window request counter per client key.

    Counters whose window ended more than a window ago are pruned at most
    once per window, so idle clients do not accumulate.
    """

    def __init__(
        self,
        limit: int,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._counters: dict[str, ThrottleCounter] = {}
        self._lock = threading.Lock()
        self._next_prune = clock() + window_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def allow(self, key: str) -> bool:
        """Count a request from ``key``. Returns False once over the limit."""
        with self._lock:
            now = self._clock()
            if now >= self._next_prune:
                self._prune(now)

            counter = self._counters.get(key)
            if counter is None:
                counter = ThrottleCounter(
                    self.limit, window_seconds=self.window_seconds, clock=self._clock
                )
                self._counters[key] = counter

        return counter.increment()

    def _prune(self, now: float) -> None:
        stale = [
            key
            for key, counter in self._counters.items()
            if now - counter.window_end > self.window_seconds
        ]
        for key in stale:
            del self._counters[key]
        self._next_prune = now + self.window_seconds


def rate_limit_middleware(limiter: ClientRateLimiter) -> Callable[..., Awaitable[web.StreamResponse]]:
    """Build middleware limiting webhook submissions per client address."""

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.path.startswith(WEBHOOK_PATH_PREFIX):
            client = request.remote or "unknown"
            if not limiter.allow(client):
                logger.debug("Webhook rate limit exceeded for %s", client)
                return web.json_response(
                    {"error": "rate limit exceeded, please try again later"},
                    status=429,
                )
        return await handler(request)

    return middleware
