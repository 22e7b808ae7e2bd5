"""Content-addressed deduplication of recent alerts.

Alerts from the same user with the same message text are suppressed for
a fixed window. Expired entries are evicted by a periodic sweep task.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from telehook.queue.models import Alert

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW_SECONDS = 30.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0

# Bytes of the SHA-256 digest kept in the key
KEY_DIGEST_BYTES = 16


def generate_dedup_key(user_id: int, message: str) -> str:
    """Generate deduplication key for a user/message pair."""
    digest = hashlib.sha256(f"{user_id}:{message}".encode()).digest()
    return digest[:KEY_DIGEST_BYTES].hex()


class DeduplicationCache:
    """Recent-alert cache keyed by a hash of user and message.

    An entry older than the window counts as absent. Only the sweep
    removes entries, so memory is bounded by what arrives between sweeps.
    """

    def __init__(
        self,
        *,
        window_seconds: float = DEFAULT_DEDUP_WINDOW_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            window_seconds: Time span within which repeats are suppressed.
            sweep_interval: Seconds between eviction sweeps.
            clock: Monotonic time source, injectable for tests.
        """
        self.window_seconds = window_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def is_running(self) -> bool:
        """Return True if the sweep task is active."""
        return self._sweep_task is not None and not self._sweep_task.done()

    def is_duplicate(self, alert: Alert) -> bool:
        """Check if an alert repeats one seen within the window.

        A non-duplicate is recorded, so later repeats inside the window
        are reported as duplicates. A duplicate does not refresh the entry.
        """
        key = generate_dedup_key(alert.user_id, alert.message)

        with self._lock:
            now = self._clock()
            last_seen = self._entries.get(key)
            if last_seen is not None and now - last_seen < self.window_seconds:
                logger.debug("Duplicate alert %s for user %s", alert.id, alert.user_id)
                return True

            self._entries[key] = now
            return False

    def sweep(self) -> int:
        """Remove entries older than the window.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired = [
                key
                for key, last_seen in self._entries.items()
                if now - last_seen > self.window_seconds
            ]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug("Evicted %d expired dedup entries", len(expired))
        return len(expired)

    async def _sweep_loop(self) -> None:
        """Background task for periodic eviction."""
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error("Error in dedup sweep: %s", e)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.is_running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.debug("Dedup sweep started (every %.1fs)", self.sweep_interval)

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        if self._sweep_task is None:
            return

        self._sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None
        logger.debug("Dedup sweep stopped")
