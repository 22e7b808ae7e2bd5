"""Data models for the alert delivery pipeline."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Any


class Priority(IntEnum):
    """Alert priority levels, lower value is more urgent."""

    URGENT = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4


class DeliveryStatus(StrEnum):
    """Outcome recorded for an alert in the webhook log."""

    SUCCESS = "success"
    FAILED = "failed"
    FILTERED = "filtered"
    PENDING = "pending"


DEFAULT_MAX_RETRIES = 3


def require_aware(name: str, value: datetime | None) -> None:
    """Raise ValueError if ``value`` is a naive datetime."""
    if value is not None and value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware, got {value!r}")


@dataclass
class Alert:
    """A queued alert on its way to a Telegram channel.

    Attributes:
        user_id: Owner of the webhook the alert was posted to.
        username: Owner's display name, used in the outbound message.
        payload: Free-form payload (``message``, ``data``, ``priority``...).
        priority: 1=urgent, 2=high, 3=normal, 4=low.
        retries: Number of delivery retries already scheduled.
        max_retries: Retry limit before the alert is given up on.
        created_at: When the alert was accepted.
        scheduled_at: Earliest time a worker may deliver the alert.
        bot_token: Bot credential used for delivery.
        channel_id: Telegram chat/channel the alert is routed to.
        db_channel_id: Channel row id, kept for the delivery log.
        rules_checked: Set once the rule engine has evaluated the alert.
        id: Unique alert identifier.
    """

    user_id: int
    payload: dict[str, Any] = field(default_factory=dict)
    username: str = ""
    priority: int = Priority.NORMAL
    retries: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    scheduled_at: datetime | None = None
    bot_token: str = ""
    channel_id: str = ""
    db_channel_id: int | None = None
    rules_checked: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if self.priority not in {p.value for p in Priority}:
            raise ValueError(f"priority must be between 1 and 4, got {self.priority}")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        require_aware("created_at", self.created_at)
        require_aware("scheduled_at", self.scheduled_at)

    @property
    def message(self) -> str:
        """Message text from the payload, empty if absent."""
        msg = self.payload.get("message")
        return msg if isinstance(msg, str) else ""

    @property
    def can_retry(self) -> bool:
        """Return True if another retry may be scheduled."""
        return self.retries < self.max_retries


@dataclass(frozen=True)
class QueueStatsSnapshot:
    """Point-in-time copy of the queue counters."""

    processed: int = 0
    failed: int = 0
    retried: int = 0
    batched: int = 0
    current_size: int = 0
    filtered: int = 0
    exhausted: int = 0
    dropped: int = 0

    def to_dict(self) -> dict[str, int]:
        """Serialize to dictionary for the stats endpoint."""
        return {
            "processed": self.processed,
            "failed": self.failed,
            "retried": self.retried,
            "batched": self.batched,
            "current_size": self.current_size,
            "filtered": self.filtered,
            "exhausted": self.exhausted,
            "dropped": self.dropped,
        }


class QueueStats:
    """Process-wide queue counters shared by workers and the aggregator."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = dict.fromkeys(QueueStatsSnapshot().to_dict(), 0)

    def add(self, name: str, amount: int = 1) -> None:
        """Add to a counter. ``current_size`` never goes below zero."""
        with self._lock:
            value = self._counts[name] + amount
            if name == "current_size":
                value = max(value, 0)
            self._counts[name] = value

    def snapshot(self) -> QueueStatsSnapshot:
        """Return a consistent copy of all counters."""
        with self._lock:
            return QueueStatsSnapshot(**self._counts)
