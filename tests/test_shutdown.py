"""Tests for the graceful shutdown handler."""

from __future__ import annotations

import asyncio
import signal
from unittest.mock import MagicMock, patch

import pytest

from telehook.shutdown import (
    DEFAULT_SHUTDOWN_TIMEOUT,
    SHUTDOWN_SIGNALS,
    GracefulShutdown,
    ShutdownTimeoutError,
)


class TestGracefulShutdownInit:
    """Tests for GracefulShutdown initialization."""

    def test_default_timeout(self) -> None:
        assert GracefulShutdown().timeout == DEFAULT_SHUTDOWN_TIMEOUT

    def test_custom_timeout(self) -> None:
        assert GracefulShutdown(timeout=60.0).timeout == 60.0

    def test_initial_state(self) -> None:
        """Should start in non-shutdown state."""
        shutdown = GracefulShutdown()
        assert shutdown.is_shutdown_requested is False
        assert shutdown.is_force_exit_requested is False

    def test_signals(self) -> None:
        assert signal.SIGTERM in SHUTDOWN_SIGNALS
        assert signal.SIGINT in SHUTDOWN_SIGNALS


class TestRequestShutdown:
    """Tests for programmatic shutdown requests."""

    async def test_request_shutdown_unblocks_wait(self) -> None:
        """Wait should return once shutdown is requested."""
        shutdown = GracefulShutdown()

        async def request_after_delay() -> None:
            await asyncio.sleep(0.05)
            shutdown.request_shutdown()

        task = asyncio.create_task(request_after_delay())
        await asyncio.wait_for(shutdown.wait(), timeout=1.0)
        await task

        assert shutdown.is_shutdown_requested is True

    async def test_request_shutdown_idempotent(self) -> None:
        shutdown = GracefulShutdown()

        shutdown.request_shutdown()
        shutdown.request_shutdown()

        assert shutdown.is_shutdown_requested is True
        await asyncio.wait_for(shutdown.wait(), timeout=0.1)


class TestSignalHandlers:
    """Tests for signal handler installation and signal behavior."""

    async def test_install_and_remove(self) -> None:
        shutdown = GracefulShutdown()
        loop = asyncio.get_running_loop()

        with (
            patch.object(loop, "add_signal_handler") as mock_add,
            patch.object(loop, "remove_signal_handler") as mock_remove,
        ):
            shutdown.install_signal_handlers()
            shutdown.remove_signal_handlers()

        assert mock_add.call_count == len(SHUTDOWN_SIGNALS)
        assert mock_remove.call_count == len(SHUTDOWN_SIGNALS)

    async def test_install_failure_logged(self) -> None:
        shutdown = GracefulShutdown()
        loop = asyncio.get_running_loop()

        with patch.object(loop, "add_signal_handler", side_effect=NotImplementedError):
            shutdown.install_signal_handlers()

        shutdown.remove_signal_handlers()

    async def test_first_signal_sets_shutdown_event(self) -> None:
        shutdown = GracefulShutdown()

        shutdown._handle_signal(signal.SIGTERM)

        assert shutdown.is_shutdown_requested is True
        assert shutdown.is_force_exit_requested is False
        await asyncio.wait_for(shutdown.wait(), timeout=0.1)

    async def test_second_signal_force_exits(self) -> None:
        shutdown = GracefulShutdown()
        shutdown._handle_signal(signal.SIGINT)

        with pytest.raises(SystemExit) as exc_info:
            shutdown._handle_signal(signal.SIGINT)

        assert exc_info.value.code == 128 + signal.SIGINT.value
        assert shutdown.is_force_exit_requested is True


class TestCleanupCallbacks:
    """Tests for cleanup callback execution."""

    async def test_runs_sync_and_async_in_order(self) -> None:
        shutdown = GracefulShutdown()
        calls: list[str] = []

        async def async_callback() -> None:
            calls.append("async")

        shutdown.register_cleanup(lambda: calls.append("sync"))
        shutdown.register_cleanup(async_callback)

        await shutdown.run_cleanup_callbacks()

        assert calls == ["sync", "async"]

    async def test_callback_error_logged(self) -> None:
        """A failing callback should not stop the others."""
        shutdown = GracefulShutdown()
        after = MagicMock()

        def failing_callback() -> None:
            raise ValueError("Cleanup failed")

        shutdown.register_cleanup(failing_callback)
        shutdown.register_cleanup(after)

        await shutdown.run_cleanup_callbacks()

        after.assert_called_once()

    async def test_timeout(self) -> None:
        shutdown = GracefulShutdown(timeout=0.05)

        async def slow() -> None:
            await asyncio.sleep(5)

        shutdown.register_cleanup(slow)

        with pytest.raises(ShutdownTimeoutError):
            await shutdown.run_cleanup_callbacks()


class TestAsyncContextManager:
    """Tests for async context manager protocol."""

    async def test_context_manager_runs_cleanup(self) -> None:
        shutdown = GracefulShutdown()
        callback = MagicMock()
        shutdown.register_cleanup(callback)

        async with shutdown:
            assert shutdown._loop is not None

        assert shutdown._loop is None
        callback.assert_called_once()
