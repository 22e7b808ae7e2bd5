"""Alert delivery pipeline - queue, scheduler and rule engine."""

from telehook.queue.dedup import DeduplicationCache, generate_dedup_key
from telehook.queue.models import (
    Alert,
    DeliveryStatus,
    Priority,
    QueueStats,
    QueueStatsSnapshot,
)
from telehook.queue.processor import DeliveryError, TelegramProcessor
from telehook.queue.rules import AlertRule, RuleEngine, default_rules
from telehook.queue.scheduler import (
    AlertProcessor,
    AlertQueue,
    QueueFullError,
    QueueRejectedError,
    QueueShuttingDownError,
    compute_backoff,
)
from telehook.queue.throttle import ThrottleCounter, ThrottleManager, max_for_priority

__all__ = [
    "Alert",
    "AlertProcessor",
    "AlertQueue",
    "AlertRule",
    "DeduplicationCache",
    "DeliveryError",
    "DeliveryStatus",
    "Priority",
    "QueueFullError",
    "QueueRejectedError",
    "QueueShuttingDownError",
    "QueueStats",
    "QueueStatsSnapshot",
    "RuleEngine",
    "TelegramProcessor",
    "ThrottleCounter",
    "ThrottleManager",
    "compute_backoff",
    "default_rules",
    "generate_dedup_key",
    "max_for_priority",
]
