"""Telegram Bot API client with outbound rate limiting.

Each bot token is limited to 30 messages/second and each destination
channel to 1 message/second, both with a burst of 5. Limits are shared by
every alert using the same token or channel through ``BotManager``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from telehook.telegram.formatter import format_webhook_message

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}/{method}"

DEFAULT_BOT_RATE = 30.0  # messages/second per token
DEFAULT_CHANNEL_RATE = 1.0  # messages/second per channel
DEFAULT_BURST = 5
DEFAULT_TIMEOUT = 10.0

# Longest Telegram-requested pause we are willing to sit through
MAX_RETRY_AFTER = 30.0


class TelegramError(Exception):
    """Raised when a message could not be delivered."""


class TelegramRateLimitError(TelegramError):
    """Raised when Telegram keeps answering 429."""

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RateLimiter:
    """Token bucket refilling at a fixed rate.

    ``acquire()`` waits until a token is available.
    """

    def __init__(
        self,
        rate: float,
        burst: int = DEFAULT_BURST,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rate = rate
        self.capacity = float(burst)
        self.tokens = float(burst)
        self._clock = clock
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self._last_refill = now

    def try_acquire(self) -> bool:
        """Try to consume one token. Returns True if successful."""
        self._refill()
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False

    def time_until_available(self) -> float:
        """Seconds until at least one token is available."""
        self._refill()
        if self.tokens >= 1.0:
            return 0.0
        return (1.0 - self.tokens) / self.rate

    async def acquire(self) -> None:
        """Wait for a token, then consume it."""
        async with self._lock:
            while not self.try_acquire():
                wait_time = self.time_until_available()
                logger.debug("Rate limit hit, waiting %.3fs", wait_time)
                await asyncio.sleep(max(wait_time, 0.001))


class TelegramBot:
    """Sends messages to one Telegram chat through one bot token."""

    def __init__(
        self,
        token: str,
        channel_id: str,
        *,
        bot_limiter: RateLimiter | None = None,
        channel_limiter: RateLimiter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the bot.

        Args:
            token: Bot API token.
            channel_id: Target chat/channel ID or @username.
            bot_limiter: Limiter shared by every chat using this token.
            channel_limiter: Limiter shared by every bot posting to this chat.
            timeout: HTTP request timeout in seconds.
        """
        self.token = token
        self.channel_id = channel_id
        self.bot_limiter = bot_limiter
        self.channel_limiter = channel_limiter
        self.timeout = timeout

    def _url(self, method: str) -> str:
        return TELEGRAM_API_BASE.format(token=self.token, method=method)

    async def _post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self._url(method), json=payload)
                result: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise TelegramError("telegram API timeout") from e
        except httpx.HTTPError as e:
            raise TelegramError(f"telegram API error: {e}") from e
        except ValueError as e:
            raise TelegramError("invalid response from telegram API") from e
        return result

    async def send_message(self, text: str) -> str:
        """Send an HTML message to the bot's channel.

        Returns:
            JSON receipt with message_id, chat_id and date.

        Raises:
            TelegramError: If the message could not be delivered.
        """
        if self.bot_limiter is not None:
            await self.bot_limiter.acquire()
        if self.channel_limiter is not None:
            await self.channel_limiter.acquire()

        payload = {
            "chat_id": self.channel_id,
            "text": text,
            "parse_mode": "HTML",
        }

        # One extra attempt when Telegram asks us to slow down
        for attempt in range(2):
            result = await self._post("sendMessage", payload)

            if result.get("ok"):
                sent = result.get("result", {})
                receipt = {
                    "message_id": sent.get("message_id"),
                    "chat_id": sent.get("chat", {}).get("id"),
                    "date": sent.get("date"),
                }
                return json.dumps(receipt)

            error_code = result.get("error_code", 0)
            description = result.get("description", "Unknown error")

            if error_code == 429:
                retry_after = float(result.get("parameters", {}).get("retry_after", 1))
                if attempt == 0 and retry_after <= MAX_RETRY_AFTER:
                    logger.warning("Telegram rate limited, retry after %.0fs", retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                raise TelegramRateLimitError(
                    f"telegram rate limit: {description}", retry_after
                )

            raise TelegramError(f"failed to send message: {error_code} - {description}")

        raise TelegramError("failed to send message")  # pragma: no cover

    async def send_formatted(self, username: str, payload: dict[str, Any]) -> str:
        """Format a webhook payload and send it.

        Args:
            username: Owner of the webhook, for logging.
            payload: Alert payload.

        Returns:
            JSON receipt from send_message().
        """
        logger.debug("Sending webhook message for %s to %s", username, self.channel_id)
        return await self.send_message(format_webhook_message(payload))


class BotManager:
    """Caches bots and shares rate limiters across alerts.

    Limiters are keyed by token and by channel, so two alerts for the
    same channel wait on the same bucket even if they use different bots.
    """

    def __init__(
        self,
        *,
        bot_rate: float = DEFAULT_BOT_RATE,
        channel_rate: float = DEFAULT_CHANNEL_RATE,
        burst: int = DEFAULT_BURST,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.bot_rate = bot_rate
        self.channel_rate = channel_rate
        self.burst = burst
        self.timeout = timeout
        self._bots: dict[tuple[str, str], TelegramBot] = {}
        self._bot_limiters: dict[str, RateLimiter] = {}
        self._channel_limiters: dict[str, RateLimiter] = {}

    def get_bot(self, token: str, channel_id: str) -> TelegramBot:
        """Get or create a bot for a token/channel pair.

        Raises:
            TelegramError: If the token or channel is empty.
        """
        if not token:
            raise TelegramError("bot token is required")
        if not channel_id:
            raise TelegramError("channel ID is required")

        key = (token, channel_id)
        bot = self._bots.get(key)
        if bot is None:
            bot_limiter = self._bot_limiters.setdefault(
                token, RateLimiter(self.bot_rate, self.burst)
            )
            channel_limiter = self._channel_limiters.setdefault(
                channel_id, RateLimiter(self.channel_rate, self.burst)
            )
            bot = TelegramBot(
                token,
                channel_id,
                bot_limiter=bot_limiter,
                channel_limiter=channel_limiter,
                timeout=self.timeout,
            )
            self._bots[key] = bot
            logger.debug("Created bot for channel %s", channel_id)
        return bot
