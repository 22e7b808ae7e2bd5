"""Alert queue with a worker pool, retry scheduling and batching.

Submission is non-blocking: a full queue rejects immediately and the
caller is expected to resubmit. Accepted alerts are delivered by a pool
of workers; failed deliveries are retried with exponential backoff, and
alerts submitted for batching are flushed together by size or timer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from telehook.queue.models import (
    Alert,
    DeliveryStatus,
    QueueStats,
    QueueStatsSnapshot,
    require_aware,
)

if TYPE_CHECKING:
    from telehook.queue.dedup import DeduplicationCache

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_WORKERS = 20
DEFAULT_QUEUE_SIZE = 15_000
DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_INTERVAL = 5.0  # seconds
DEFAULT_BATCH_CAPACITY = 100  # pending batches
DEFAULT_BACKOFF_UNIT = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 300.0  # seconds

# 2**32 seconds is far beyond any sane cap
MAX_BACKOFF_EXPONENT = 32

# Marks the end of a queue during shutdown
_STOP = object()


class QueueRejectedError(Exception):
    """Raised when an alert cannot be accepted right now."""


class QueueFullError(QueueRejectedError):
    """Raised when the queue has no capacity left."""


class QueueShuttingDownError(QueueRejectedError):
    """Raised when the queue no longer accepts alerts."""


class AlertProcessor(Protocol):
    """Protocol for alert delivery backends."""

    async def process_alert(self, alert: Alert) -> DeliveryStatus:
        """Deliver one alert. Raises on a failure worth retrying."""
        ...

    async def process_batch(self, alerts: Sequence[Alert]) -> None:
        """Deliver a batch of alerts. Raises if the batch failed."""
        ...


def compute_backoff(
    retries: int,
    *,
    unit: float = DEFAULT_BACKOFF_UNIT,
    cap: float = DEFAULT_MAX_BACKOFF,
) -> float:
    """Get the delay before retry number ``retries`` (1-based).

    The delay doubles with each retry (2, 4, 8... units) and never
    exceeds ``cap``.
    """
    exponent = min(max(retries, 0), MAX_BACKOFF_EXPONENT)
    return min(unit * (2**exponent), cap)


class AlertQueue:
    """Bounded alert queue served by a fixed pool of workers.

    Background tasks:
        - ``workers`` delivery workers pulling from the work queue
        - a retry worker moving backed-off alerts into the work queue
        - a batch aggregator flushing batched alerts by size or timer

    Example:
        ```python
        queue = AlertQueue(processor, workers=4)
        queue.start()

        queue.enqueue(Alert(user_id=1, payload={"message": "disk full"}))

        await queue.stop()
        ```
    """

    def __init__(
        self,
        processor: AlertProcessor,
        *,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_interval: float = DEFAULT_BATCH_INTERVAL,
        batch_capacity: int = DEFAULT_BATCH_CAPACITY,
        backoff_unit: float = DEFAULT_BACKOFF_UNIT,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        dedup_cache: DeduplicationCache | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            processor: Delivery backend.
            workers: Number of concurrent delivery workers.
            queue_size: Capacity of the work queue.
            batch_size: Buffered alerts that trigger a batch flush.
            batch_interval: Seconds between timed batch flushes.
            batch_capacity: Capacity of the batch intake queue, in batches.
            backoff_unit: Base retry delay in seconds.
            max_backoff: Upper bound on any retry delay, in seconds.
            dedup_cache: Cache whose sweep runs while the queue runs.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.processor = processor
        self.workers = workers
        self.queue_size = queue_size
        self.batch_size = batch_size
        self.batch_interval = batch_interval
        self.backoff_unit = backoff_unit
        self.max_backoff = max_backoff
        self.dedup_cache = dedup_cache

        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=queue_size)
        self._retry_queue: asyncio.Queue[object] = asyncio.Queue(
            maxsize=max(1, queue_size // 2)
        )
        self._batch_queue: asyncio.Queue[object] = asyncio.Queue(maxsize=batch_capacity)
        self._stats = QueueStats()

        self._stopping = asyncio.Event()
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._retry_task: asyncio.Task[None] | None = None
        self._batch_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Return True between start() and stop()."""
        return bool(self._worker_tasks) and not self._stopping.is_set()

    @property
    def stats(self) -> QueueStatsSnapshot:
        """Current queue statistics."""
        return self._stats.snapshot()

    # Submission

    def enqueue(self, alert: Alert) -> None:
        """Add an alert to the work queue without waiting.

        Raises:
            QueueShuttingDownError: If stop() has been called.
            QueueFullError: If the queue is at capacity.
            ValueError: If the alert has a naive ``scheduled_at``.
        """
        if self._stopping.is_set():
            raise QueueShuttingDownError("queue is shutting down")

        self._prepare(alert)
        try:
            self._queue.put_nowait(alert)
        except asyncio.QueueFull:
            raise QueueFullError("queue is full") from None
        self._stats.add("current_size")

    def enqueue_batch(self, alerts: Sequence[Alert]) -> None:
        """Hand alerts to the batch aggregator without waiting.

        Raises:
            QueueShuttingDownError: If stop() has been called.
            QueueFullError: If the batch intake queue is at capacity.
            ValueError: If an alert has a naive ``scheduled_at``.
        """
        if self._stopping.is_set():
            raise QueueShuttingDownError("queue is shutting down")

        for alert in alerts:
            self._prepare(alert)
        try:
            self._batch_queue.put_nowait(list(alerts))
        except asyncio.QueueFull:
            raise QueueFullError("batch queue is full") from None

    @staticmethod
    def _prepare(alert: Alert) -> None:
        require_aware("scheduled_at", alert.scheduled_at)
        if alert.scheduled_at is None:
            alert.scheduled_at = datetime.now(UTC)

    # Workers

    async def _worker(self, worker_id: int) -> None:
        logger.debug("Worker %d started", worker_id)
        while True:
            item = await self._queue.get()
            if item is _STOP:
                break
            if not isinstance(item, Alert):
                continue

            self._stats.add("current_size", -1)
            try:
                await self._process_alert(item, worker_id)
            except Exception as e:
                logger.error("Worker %d: unexpected error on alert %s: %s", worker_id, item.id, e)
                self._stats.add("dropped")
        logger.debug("Worker %d stopping", worker_id)

    async def _wait_until_scheduled(self, alert: Alert) -> bool:
        """Sleep until the alert is due. Returns False if stopped first."""
        if alert.scheduled_at is None:
            return True

        delay = (alert.scheduled_at - datetime.now(UTC)).total_seconds()
        if delay <= 0:
            return True

        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except TimeoutError:
            return True
        return False

    async def _process_alert(self, alert: Alert, worker_id: int) -> None:
        if not await self._wait_until_scheduled(alert):
            logger.warning(
                "Worker %d: dropping alert %s scheduled for %s, queue is stopping",
                worker_id,
                alert.id,
                alert.scheduled_at,
            )
            self._stats.add("dropped")
            return

        try:
            status = await self.processor.process_alert(alert)
        except Exception as e:
            logger.warning("Worker %d: failed to process alert %s: %s", worker_id, alert.id, e)
            self._stats.add("failed")

            if alert.can_retry:
                self._schedule_retry(alert)
            else:
                self._stats.add("exhausted")
                logger.error(
                    "Alert %s exceeded max retries (%d)", alert.id, alert.max_retries
                )
            return

        self._stats.add("processed")
        if status == DeliveryStatus.FILTERED:
            self._stats.add("filtered")

    # Retries

    def _schedule_retry(self, alert: Alert) -> None:
        """Back off and hand the alert to the retry worker."""
        alert.retries += 1
        self._stats.add("retried")

        delay = compute_backoff(alert.retries, unit=self.backoff_unit, cap=self.max_backoff)
        alert.scheduled_at = datetime.now(UTC) + timedelta(seconds=delay)

        logger.info(
            "Scheduling retry %d/%d for alert %s in %.1f seconds",
            alert.retries,
            alert.max_retries,
            alert.id,
            delay,
        )

        try:
            self._retry_queue.put_nowait(alert)
        except asyncio.QueueFull:
            self._stats.add("dropped")
            logger.warning("Retry queue full, dropping alert %s", alert.id)

    async def _retry_worker(self) -> None:
        logger.debug("Retry worker started")
        while True:
            item = await self._retry_queue.get()
            if item is _STOP:
                break
            if not isinstance(item, Alert):
                continue

            try:
                self.enqueue(item)
            except QueueRejectedError as e:
                self._stats.add("dropped")
                logger.warning("Failed to re-enqueue alert %s: %s", item.id, e)
        logger.debug("Retry worker stopping")

    # Batching

    async def _batch_aggregator(self) -> None:
        logger.debug("Batch aggregator started")
        loop = asyncio.get_running_loop()
        buffer: list[Alert] = []
        next_tick = loop.time() + self.batch_interval

        while True:
            timeout = max(0.0, next_tick - loop.time())
            try:
                item = await asyncio.wait_for(self._batch_queue.get(), timeout=timeout)
            except TimeoutError:
                next_tick = loop.time() + self.batch_interval
                if buffer:
                    await self._flush_batch(buffer)
                    buffer = []
                continue

            if item is _STOP:
                if buffer:
                    await self._flush_batch(buffer)
                break
            if not isinstance(item, list):
                continue

            buffer.extend(item)
            if len(buffer) >= self.batch_size:
                await self._flush_batch(buffer)
                buffer = []
        logger.debug("Batch aggregator stopping")

    async def _flush_batch(self, alerts: list[Alert]) -> None:
        logger.info("Processing batch of %d alerts", len(alerts))

        try:
            await self.processor.process_batch(alerts)
        except Exception as e:
            logger.warning("Batch processing failed: %s", e)
            self._stats.add("failed")

            # Fall back to individual delivery
            for alert in alerts:
                try:
                    self.enqueue(alert)
                except QueueRejectedError as reject:
                    self._stats.add("dropped")
                    logger.warning(
                        "Failed to re-enqueue alert %s from batch: %s", alert.id, reject
                    )
            return

        self._stats.add("batched", len(alerts))
        self._stats.add("processed", len(alerts))

    # Lifecycle

    def start(self) -> None:
        """Start workers, the retry worker, the batch aggregator and the dedup sweep."""
        if self._worker_tasks:
            return

        logger.info("Starting alert queue with %d workers", self.workers)
        self._worker_tasks = [
            asyncio.create_task(self._worker(i), name=f"alert-worker-{i}")
            for i in range(self.workers)
        ]
        self._retry_task = asyncio.create_task(self._retry_worker(), name="alert-retry")
        self._batch_task = asyncio.create_task(self._batch_aggregator(), name="alert-batch")
        if self.dedup_cache is not None:
            self.dedup_cache.start()
        logger.info("Alert queue started")

    async def stop(self) -> None:
        """Stop accepting alerts and wait for every background task to exit.

        The batch buffer is flushed and buffered work is drained once.
        Retries that have not made it back into the work queue are lost.
        """
        if not self._worker_tasks or self._stopping.is_set():
            return

        logger.info("Stopping alert queue...")
        self._stopping.set()

        if self._batch_task is not None:
            await self._batch_queue.put(_STOP)
            await self._batch_task

        for _ in self._worker_tasks:
            await self._queue.put(_STOP)
        await asyncio.gather(*self._worker_tasks)

        if self._retry_task is not None:
            await self._retry_queue.put(_STOP)
            await self._retry_task

        if self.dedup_cache is not None:
            await self.dedup_cache.stop()

        logger.info("Alert queue stopped")

    async def __aenter__(self) -> AlertQueue:
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(self, *_args: object) -> None:
        """Async context manager exit."""
        await self.stop()

