"""Telegram delivery - Bot API client and message formatting."""

from telehook.telegram.client import (
    BotManager,
    RateLimiter,
    TelegramBot,
    TelegramError,
    TelegramRateLimitError,
)
from telehook.telegram.formatter import format_webhook_message

__all__ = [
    "BotManager",
    "RateLimiter",
    "TelegramBot",
    "TelegramError",
    "TelegramRateLimitError",
    "format_webhook_message",
]
