"""Relay wiring - builds every component from settings.

Data flow:
    POST /api/webhook/{token} -> AlertQueue -> TelegramProcessor
        -> RuleEngine (dedup, throttle, rules) -> TelegramBot
        -> webhook_logs
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telehook.queue import (
    AlertQueue,
    DeduplicationCache,
    RuleEngine,
    TelegramProcessor,
    ThrottleManager,
    default_rules,
)
from telehook.server import RelayServer
from telehook.storage import RelayStore, create_engine, create_session_factory, create_tables
from telehook.telegram import BotManager

if TYPE_CHECKING:
    from telehook.config import Settings
    from telehook.telegram import TelegramBot

logger = logging.getLogger(__name__)


class Relay:
    """Owns the database engine, the alert queue and the HTTP server.

    Example:
        ```python
        relay = Relay(get_settings())
        await relay.start()
        ...
        await relay.stop()
        ```
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

        self.engine = create_engine(settings.database.url, echo=settings.database.echo)
        self.store = RelayStore(create_session_factory(self.engine))

        self.bot_manager = BotManager()
        self.dedup_cache = DeduplicationCache(
            window_seconds=settings.rules.dedup_window_seconds
        )
        self.rule_engine = RuleEngine(self.dedup_cache, ThrottleManager())

        self.processor = TelegramProcessor(
            self.bot_manager,
            self.store,
            self.rule_engine,
            default_bot=self._default_bot(),
        )
        self.processor.initialize_default_rules(
            default_rules(
                settings.rules.spam_keywords,
                case_insensitive=settings.rules.spam_case_insensitive,
            )
        )

        self.queue = AlertQueue(
            self.processor,
            workers=settings.queue.workers,
            queue_size=settings.queue.size,
            batch_size=settings.queue.batch_size,
            batch_interval=settings.queue.batch_interval_seconds,
            max_backoff=settings.queue.max_backoff_seconds,
            dedup_cache=self.dedup_cache,
        )
        self.server = RelayServer(self.queue, self.store, rate_limit=settings.rate_limit)

        self._running = False

    def _default_bot(self) -> TelegramBot | None:
        telegram = self.settings.telegram
        if not telegram.enabled or telegram.bot_token is None or telegram.channel_id is None:
            return None
        return self.bot_manager.get_bot(telegram.bot_token.get_secret_value(), telegram.channel_id)

    @property
    def is_running(self) -> bool:
        """Return True between start() and stop()."""
        return self._running

    async def start(self, *, serve_http: bool = True) -> None:
        """Prepare the database, start the queue and begin serving.

        Args:
            serve_http: Bind the HTTP listener (tests drive the app directly).
        """
        if self._running:
            logger.warning("Relay already running")
            return

        await create_tables(self.engine)
        self.queue.start()
        if serve_http:
            await self.server.start(self.settings.host, self.settings.port)

        self._running = True
        logger.info("Relay started")

    async def stop(self) -> None:
        """Stop intake first, then drain the queue, then release the database."""
        if not self._running:
            return

        await self.server.stop()
        await self.queue.stop()
        await self.engine.dispose()

        self._running = False
        logger.info("Relay stopped")
