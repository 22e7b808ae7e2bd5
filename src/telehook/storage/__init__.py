"""Storage layer - users, routes and the delivery log."""

from telehook.storage.database import create_engine, create_session_factory, create_tables
from telehook.storage.repos import (
    BotRepository,
    ChannelRepository,
    RelayStore,
    TelegramBotDTO,
    TelegramChannelDTO,
    UserDTO,
    UserRepository,
    WebhookLogDTO,
    WebhookLogRepository,
)

__all__ = [
    "BotRepository",
    "ChannelRepository",
    "RelayStore",
    "TelegramBotDTO",
    "TelegramChannelDTO",
    "UserDTO",
    "UserRepository",
    "WebhookLogDTO",
    "WebhookLogRepository",
    "create_engine",
    "create_session_factory",
    "create_tables",
]
