"""Repository pattern implementations for data access.

This module provides data access abstractions for users, their bots and
channels, and the webhook delivery log. ``RelayStore`` wraps them for the
rest of the relay, opening one session per operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from telehook.storage.models import (
    TelegramBotModel,
    TelegramChannelModel,
    UserModel,
    WebhookLogModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass
class UserDTO:
    """Data transfer object for users."""

    id: int
    username: str
    email: str
    webhook_token: str
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            username=model.username,
            email=model.email,
            webhook_token=model.webhook_token,
            created_at=model.created_at,
        )


@dataclass
class TelegramBotDTO:
    """Data transfer object for Telegram bots."""

    id: int
    user_id: int
    bot_token: str
    bot_username: str | None
    is_default: bool

    @classmethod
    def from_model(cls, model: TelegramBotModel) -> TelegramBotDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            user_id=model.user_id,
            bot_token=model.bot_token,
            bot_username=model.bot_username,
            is_default=model.is_default,
        )


@dataclass
class TelegramChannelDTO:
    """Data transfer object for channel routes."""

    id: int
    user_id: int
    bot_id: int
    identifier: str
    channel_id: str
    channel_name: str | None
    is_active: bool

    @classmethod
    def from_model(cls, model: TelegramChannelModel) -> TelegramChannelDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            user_id=model.user_id,
            bot_id=model.bot_id,
            identifier=model.identifier,
            channel_id=model.channel_id,
            channel_name=model.channel_name,
            is_active=model.is_active,
        )


@dataclass
class WebhookLogDTO:
    """Data transfer object for delivery log entries."""

    id: int
    user_id: int
    payload: dict[str, Any]
    telegram_response: str | None
    status: str
    sent_at: datetime
    channel_id: int | None = None

    @classmethod
    def from_model(cls, model: WebhookLogModel) -> WebhookLogDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            user_id=model.user_id,
            payload=model.payload,
            telegram_response=model.telegram_response,
            status=model.status,
            sent_at=model.sent_at,
            channel_id=model.channel_id,
        )


class UserRepository:
    """Repository for relay users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, username: str, email: str, password_hash: str) -> UserDTO:
        """Create a user with a fresh webhook token."""
        model = UserModel(username=username, email=email, password_hash=password_hash)
        self.session.add(model)
        await self.session.flush()
        return UserDTO.from_model(model)

    async def get_by_webhook_token(self, token: str) -> UserDTO | None:
        """Get the user owning a webhook token.

        Args:
            token: Webhook token (UUID string).

        Returns:
            UserDTO if found, None otherwise.
        """
        result = await self.session.execute(
            select(UserModel).where(UserModel.webhook_token == token.lower())
        )
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None


class BotRepository:
    """Repository for user-owned Telegram bots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        user_id: int,
        bot_token: str,
        *,
        bot_username: str | None = None,
        is_default: bool = False,
    ) -> TelegramBotDTO:
        """Register a bot token for a user."""
        model = TelegramBotModel(
            user_id=user_id,
            bot_token=bot_token,
            bot_username=bot_username,
            is_default=is_default,
        )
        self.session.add(model)
        await self.session.flush()
        return TelegramBotDTO.from_model(model)

    async def get_by_id(self, bot_id: int) -> TelegramBotDTO | None:
        """Get a bot by primary key."""
        result = await self.session.execute(
            select(TelegramBotModel).where(TelegramBotModel.id == bot_id)
        )
        model = result.scalar_one_or_none()
        return TelegramBotDTO.from_model(model) if model else None


class ChannelRepository:
    """Repository for channel routes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        user_id: int,
        bot_id: int,
        identifier: str,
        channel_id: str,
        *,
        channel_name: str | None = None,
        description: str | None = None,
        is_active: bool = True,
    ) -> TelegramChannelDTO:
        """Create a channel route for a user."""
        model = TelegramChannelModel(
            user_id=user_id,
            bot_id=bot_id,
            identifier=identifier,
            channel_id=channel_id,
            channel_name=channel_name,
            description=description,
            is_active=is_active,
        )
        self.session.add(model)
        await self.session.flush()
        return TelegramChannelDTO.from_model(model)

    async def get_by_identifier(
        self, user_id: int, identifier: str
    ) -> TelegramChannelDTO | None:
        """Get an active channel by the user's routing identifier.

        Returns:
            TelegramChannelDTO if found and active, None otherwise.
        """
        result = await self.session.execute(
            select(TelegramChannelModel).where(
                TelegramChannelModel.user_id == user_id,
                TelegramChannelModel.identifier == identifier,
                TelegramChannelModel.is_active.is_(True),
            )
        )
        model = result.scalar_one_or_none()
        return TelegramChannelDTO.from_model(model) if model else None


class WebhookLogRepository:
    """Repository for the delivery log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        user_id: int,
        payload: dict[str, Any],
        telegram_response: str,
        status: str,
        *,
        channel_id: int | None = None,
    ) -> WebhookLogDTO:
        """Insert a log entry."""
        model = WebhookLogModel(
            user_id=user_id,
            payload=payload,
            telegram_response=telegram_response,
            status=status,
            channel_id=channel_id,
        )
        self.session.add(model)
        await self.session.flush()
        return WebhookLogDTO.from_model(model)

    async def get_recent(self, user_id: int, limit: int = 10) -> list[WebhookLogDTO]:
        """Get a user's most recent log entries, newest first."""
        result = await self.session.execute(
            select(WebhookLogModel)
            .where(WebhookLogModel.user_id == user_id)
            .order_by(WebhookLogModel.sent_at.desc(), WebhookLogModel.id.desc())
            .limit(limit)
        )
        return [WebhookLogDTO.from_model(m) for m in result.scalars().all()]


class RelayStore:
    """Persistence facade used by the webhook handler and the processor.

    Every call runs in its own session and transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_user_by_webhook_token(self, token: str) -> UserDTO | None:
        """Get the user owning a webhook token."""
        async with self.session_factory() as session:
            return await UserRepository(session).get_by_webhook_token(token)

    async def get_channel_by_identifier(
        self, user_id: int, identifier: str
    ) -> TelegramChannelDTO | None:
        """Get the active channel route for an identifier."""
        async with self.session_factory() as session:
            return await ChannelRepository(session).get_by_identifier(user_id, identifier)

    async def get_bot_by_id(self, bot_id: int) -> TelegramBotDTO | None:
        """Get a bot by primary key."""
        async with self.session_factory() as session:
            return await BotRepository(session).get_by_id(bot_id)

    async def record_delivery_outcome(
        self,
        user_id: int,
        payload: dict[str, Any],
        detail: str,
        status: str,
        *,
        channel_id: int | None = None,
    ) -> None:
        """Write a delivery outcome to the webhook log."""
        async with self.session_factory() as session, session.begin():
            await WebhookLogRepository(session).create(
                user_id, payload, detail, status, channel_id=channel_id
            )
        logger.debug("Recorded %s outcome for user %s", status, user_id)

    async def get_recent_logs(self, user_id: int, limit: int = 10) -> list[WebhookLogDTO]:
        """Get a user's most recent delivery outcomes."""
        async with self.session_factory() as session:
            return await WebhookLogRepository(session).get_recent(user_id, limit)
