"""Per-user fixed-window throttling."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from telehook.queue.models import Priority

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0

# Alerts allowed per window, by priority
PRIORITY_CEILINGS: dict[int, int] = {
    Priority.URGENT: 100,
    Priority.HIGH: 60,
    Priority.NORMAL: 30,
    Priority.LOW: 10,
}
DEFAULT_CEILING = PRIORITY_CEILINGS[Priority.NORMAL]


def max_for_priority(priority: int) -> int:
    """Get the per-window ceiling for a priority level."""
    return PRIORITY_CEILINGS.get(priority, DEFAULT_CEILING)


class ThrottleCounter:
    """Counter for a single key over a lazily rolled fixed window.

    The window is only moved forward when a check happens after it has
    ended; nothing is scheduled in the background.
    """

    def __init__(
        self,
        max_per_window: int,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self._clock = clock
        self.count = 0
        self.window_end = clock() + window_seconds
        self._lock = threading.Lock()

    def increment(self) -> bool:
        """Count one event. Returns False if the ceiling is already reached."""
        with self._lock:
            now = self._clock()
            if now > self.window_end:
                self.count = 0
                self.window_end = now + self.window_seconds

            if self.count >= self.max_per_window:
                return False

            self.count += 1
            return True


class ThrottleManager:
    """Tracks alert rates per user.

    Each user gets one counter, created on first use with a ceiling taken
    from the priority of that first alert. Counters lock independently so
    different users never contend.
    """

    def __init__(
        self,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._counters: dict[int, ThrottleCounter] = {}
        self._lock = threading.Lock()

    def allow(self, user_id: int, priority: int) -> bool:
        """Check whether another alert from ``user_id`` fits in the window."""
        with self._lock:
            counter = self._counters.get(user_id)
            if counter is None:
                counter = ThrottleCounter(
                    max_for_priority(priority),
                    window_seconds=self.window_seconds,
                    clock=self._clock,
                )
                self._counters[user_id] = counter

        allowed = counter.increment()
        if not allowed:
            logger.debug("Throttled user %s (max %d/window)", user_id, counter.max_per_window)
        return allowed

    def get_counter(self, user_id: int) -> ThrottleCounter | None:
        """Get the counter for a user, if one exists."""
        with self._lock:
            return self._counters.get(user_id)

    def reset(self, user_id: int) -> bool:
        """Forget a user's counter so the next alert recreates it.

        Returns:
            True if a counter was removed.
        """
        with self._lock:
            return self._counters.pop(user_id, None) is not None
