"""Signal-driven graceful shutdown for the relay.

Usage:
    ```python
    async def main():
        shutdown = GracefulShutdown(timeout=30.0)

        async with shutdown:
            relay = Relay(settings)
            shutdown.register_cleanup(relay.stop)
            await relay.start()

            # Wait for SIGTERM/SIGINT
            await shutdown.wait()
    ```

Cleanup callbacks run when the context exits, under one shared timeout.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any

logger = logging.getLogger(__name__)

# Default shutdown timeout in seconds
DEFAULT_SHUTDOWN_TIMEOUT = 30.0

# Signals to trap for graceful shutdown
SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)

CleanupCallback = Callable[[], Awaitable[Any] | Any]


class ShutdownTimeoutError(Exception):
    """Raised when cleanup does not finish within the shutdown timeout."""


class GracefulShutdown:
    """Traps SIGTERM/SIGINT and coordinates an orderly stop.

    The first signal sets an event that ``wait()`` returns on. A second
    signal exits the process immediately with ``128 + signal``.
    """

    def __init__(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """Initialize the shutdown handler.

        Args:
            timeout: Maximum time in seconds the cleanup callbacks may take.
        """
        self._timeout = timeout
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False
        self._force_exit_requested = False
        self._cleanup_callbacks: list[CleanupCallback] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def timeout(self) -> float:
        """Shutdown timeout in seconds."""
        return self._timeout

    @property
    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested

    @property
    def is_force_exit_requested(self) -> bool:
        """Check if a second signal arrived."""
        return self._force_exit_requested

    def register_cleanup(self, callback: CleanupCallback) -> None:
        """Register a sync or async callable to run on exit, in order."""
        self._cleanup_callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Trigger shutdown from application code."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("Shutdown requested programmatically")
            self._shutdown_event.set()

    async def wait(self) -> None:
        """Block until a signal arrives or request_shutdown() is called."""
        await self._shutdown_event.wait()

    def install_signal_handlers(self) -> None:
        """Route SIGTERM and SIGINT to the running event loop."""
        self._loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
                logger.debug("Installed handler for %s", sig.name)
            except (NotImplementedError, ValueError, OSError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)

    def remove_signal_handlers(self) -> None:
        """Remove the handlers installed by install_signal_handlers()."""
        if self._loop is None:
            return
        for sig in SHUTDOWN_SIGNALS:
            with suppress(NotImplementedError, ValueError, OSError):
                self._loop.remove_signal_handler(sig)
        self._loop = None
        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            self._force_exit_requested = True
            logger.warning("Received %s again - forcing exit!", sig.name)
            sys.exit(128 + sig.value)

        self._shutdown_requested = True
        logger.info("Received %s - initiating graceful shutdown...", sig.name)
        self._shutdown_event.set()

    async def _run_callbacks(self) -> None:
        for callback in self._cleanup_callbacks:
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Cleanup callback failed: %s", e)

    async def run_cleanup_callbacks(self) -> None:
        """Run all registered callbacks within the timeout.

        Raises:
            ShutdownTimeoutError: If the callbacks did not finish in time.
        """
        try:
            await asyncio.wait_for(self._run_callbacks(), timeout=self._timeout)
        except TimeoutError:
            raise ShutdownTimeoutError(
                f"cleanup did not finish within {self._timeout:.1f}s"
            ) from None

    async def __aenter__(self) -> GracefulShutdown:
        """Async context manager entry - install signal handlers."""
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        """Async context manager exit - remove handlers and clean up."""
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
