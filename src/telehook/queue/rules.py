"""Rule engine gating which alerts get delivered.

Checks run in a fixed order and the first rejection wins:

1. Deduplication (same user and message within the dedup window)
2. Per-user throttling (ceiling chosen by priority)
3. Custom filter rules, in registration order
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from telehook.queue.dedup import DeduplicationCache
from telehook.queue.models import Alert
from telehook.queue.throttle import ThrottleManager

logger = logging.getLogger(__name__)

DEFAULT_SPAM_KEYWORDS: tuple[str, ...] = ("viagra", "casino", "lottery")

REASON_DUPLICATE = "duplicate alert filtered"
REASON_RATE_LIMITED = "rate limit exceeded"

AlertFilter = Callable[[Alert], bool]


@dataclass(frozen=True)
class AlertRule:
    """A named predicate over alerts.

    Attributes:
        name: Rule name, used in the rejection reason.
        filter_func: Returns False to reject the alert.
        enabled: Disabled rules are skipped.
        throttle_window: Declared window in seconds (not enforced here).
        max_per_window: Declared ceiling for the window (not enforced here).
    """

    name: str
    filter_func: AlertFilter | None = None
    enabled: bool = True
    throttle_window: float | None = None
    max_per_window: int | None = None

    def accepts(self, alert: Alert) -> bool:
        """Return True if the rule lets the alert through."""
        if not self.enabled or self.filter_func is None:
            return True
        return self.filter_func(alert)


class RuleEngine:
    """Composes deduplication, throttling and custom rules.

    The cache and throttle manager are injected so one shared instance
    can be owned by the application and tied to the queue's lifecycle.
    """

    def __init__(
        self,
        deduplication: DeduplicationCache,
        throttle: ThrottleManager,
        rules: Iterable[AlertRule] = (),
    ) -> None:
        self.deduplication = deduplication
        self.throttle = throttle
        self._rules: list[AlertRule] = list(rules)
        self._lock = threading.Lock()

    @property
    def rules(self) -> list[AlertRule]:
        """Registered rules, in evaluation order."""
        with self._lock:
            return list(self._rules)

    def add_rule(self, rule: AlertRule) -> None:
        """Register a rule after the existing ones."""
        with self._lock:
            self._rules.append(rule)
        logger.info("Registered alert rule: %s", rule.name)

    def evaluate(self, alert: Alert) -> tuple[bool, str]:
        """Decide whether an alert may be delivered.

        The dedup record and the throttle increment are kept even when a
        later stage rejects the alert.

        Returns:
            Tuple of (allowed, reason). Reason is empty when allowed.
        """
        if self.deduplication.is_duplicate(alert):
            return False, REASON_DUPLICATE

        if not self.throttle.allow(alert.user_id, alert.priority):
            return False, REASON_RATE_LIMITED

        for rule in self.rules:
            if not rule.accepts(alert):
                return False, f"filtered by rule: {rule.name}"

        return True, ""


def _block_empty(alert: Alert) -> bool:
    return len(alert.message) > 0


def block_keywords(keywords: Sequence[str], *, case_insensitive: bool = False) -> AlertFilter:
    """Build a filter rejecting messages that contain any keyword."""
    if case_insensitive:
        needles = [k.casefold() for k in keywords]
    else:
        needles = list(keywords)

    def _filter(alert: Alert) -> bool:
        text = alert.message.casefold() if case_insensitive else alert.message
        return not any(needle in text for needle in needles)

    return _filter


def default_rules(
    spam_keywords: Sequence[str] = DEFAULT_SPAM_KEYWORDS,
    *,
    case_insensitive: bool = False,
) -> list[AlertRule]:
    """Get the rules registered at startup."""
    return [
        AlertRule(name="Block Empty Messages", filter_func=_block_empty),
        AlertRule(
            name="Block Spam Keywords",
            filter_func=block_keywords(spam_keywords, case_insensitive=case_insensitive),
        ),
    ]
