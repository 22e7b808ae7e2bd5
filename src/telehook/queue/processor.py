"""Telegram delivery backend for the alert queue."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any, Protocol

from telehook.queue.models import Alert, DeliveryStatus
from telehook.telegram.client import TelegramError

if TYPE_CHECKING:
    from telehook.queue.rules import AlertRule, RuleEngine
    from telehook.telegram.client import BotManager, TelegramBot

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """Raised when an alert could not be handed to Telegram."""


class OutcomeRecorder(Protocol):
    """Protocol for the delivery log."""

    async def record_delivery_outcome(
        self,
        user_id: int,
        payload: dict[str, Any],
        detail: str,
        status: str,
        *,
        channel_id: int | None = None,
    ) -> None:
        """Persist the outcome of one alert."""
        ...


class TelegramProcessor:
    """Applies the rule engine and delivers alerts through Telegram.

    Alerts carrying a bot token and channel are sent through that pair;
    alerts without routing fall back to ``default_bot`` when configured.
    Rules are evaluated once per alert, so retries only repeat the send.
    """

    def __init__(
        self,
        bot_manager: BotManager,
        recorder: OutcomeRecorder,
        rule_engine: RuleEngine,
        *,
        default_bot: TelegramBot | None = None,
    ) -> None:
        self.bot_manager = bot_manager
        self.recorder = recorder
        self.rule_engine = rule_engine
        self.default_bot = default_bot

    async def _record(self, alert: Alert, detail: str, status: DeliveryStatus) -> None:
        try:
            await self.recorder.record_delivery_outcome(
                alert.user_id,
                alert.payload,
                detail,
                status.value,
                channel_id=alert.db_channel_id,
            )
        except Exception as e:
            logger.error("Failed to record %s outcome for alert %s: %s", status, alert.id, e)

    def _select_bot(self, alert: Alert) -> TelegramBot:
        if alert.bot_token and alert.channel_id:
            return self.bot_manager.get_bot(alert.bot_token, alert.channel_id)
        if self.default_bot is None:
            raise DeliveryError("telegram bot not configured")
        return self.default_bot

    async def process_alert(self, alert: Alert) -> DeliveryStatus:
        """Filter and deliver a single alert.

        Returns:
            FILTERED if a rule rejected the alert, SUCCESS once delivered.

        Raises:
            DeliveryError: If no bot is available for the alert.
            TelegramError: If Telegram rejected or never received the message.
        """
        if not alert.rules_checked:
            allowed, reason = self.rule_engine.evaluate(alert)
            alert.rules_checked = True
            if not allowed:
                logger.info("Alert %s blocked: %s", alert.id, reason)
                await self._record(alert, reason, DeliveryStatus.FILTERED)
                return DeliveryStatus.FILTERED

        try:
            bot = self._select_bot(alert)
            receipt = await bot.send_formatted(alert.username, alert.payload)
        except (DeliveryError, TelegramError) as e:
            await self._record(alert, str(e), DeliveryStatus.FAILED)
            raise

        await self._record(alert, receipt, DeliveryStatus.SUCCESS)
        logger.info(
            "Alert %s delivered for user %s to channel %s",
            alert.id,
            alert.user_id,
            alert.channel_id or "(default)",
        )
        return DeliveryStatus.SUCCESS

    async def process_batch(self, alerts: Sequence[Alert]) -> None:
        """Deliver alerts one by one.

        Raises:
            DeliveryError: If every alert in a non-empty batch failed.
        """
        if not alerts:
            return

        success_count = 0
        error_count = 0
        for alert in alerts:
            try:
                await self.process_alert(alert)
            except (DeliveryError, TelegramError) as e:
                error_count += 1
                logger.warning("Batch: failed to process alert %s: %s", alert.id, e)
            else:
                success_count += 1

        logger.info("Batch complete: %d succeeded, %d failed", success_count, error_count)

        if error_count > 0 and success_count == 0:
            raise DeliveryError("all alerts in batch failed")

    def add_rule(self, rule: AlertRule) -> None:
        """Register a custom rule."""
        self.rule_engine.add_rule(rule)

    def initialize_default_rules(self, rules: Iterable[AlertRule]) -> None:
        """Register the startup rules."""
        for rule in rules:
            self.rule_engine.add_rule(rule)
        logger.info("Default alert rules initialized")
