"""SQLAlchemy models for persistent storage.

This module defines the database schema for relay users, their Telegram
bots and channels, and the delivery log written for every alert outcome.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UserModel(Base):
    """SQLAlchemy model for relay users.

    Each user owns one webhook token; the webhook URL is built from it.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    webhook_token: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4())
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (Index("idx_users_webhook_token", "webhook_token"),)

    def __repr__(self) -> str:
        return f"<UserModel(id={self.id}, username={self.username})>"


class TelegramBotModel(Base):
    """SQLAlchemy model for user-owned Telegram bot tokens."""

    __tablename__ = "telegram_bots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    bot_token: Mapped[str] = mapped_column(String(255), nullable=False)
    bot_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "bot_token", name="uq_telegram_bots_user_token"),
        Index("idx_telegram_bots_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<TelegramBotModel(id={self.id}, user_id={self.user_id})>"


class TelegramChannelModel(Base):
    """SQLAlchemy model for channel routing.

    The identifier is what users append to a message (``----\\nalerts``)
    to pick the destination channel.
    """

    __tablename__ = "telegram_channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    bot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("telegram_bots.id", ondelete="CASCADE"), nullable=False
    )
    identifier: Mapped[str] = mapped_column(String(50), nullable=False)
    channel_id: Mapped[str] = mapped_column(String(255), nullable=False)
    channel_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "identifier", name="uq_telegram_channels_user_identifier"),
        Index("idx_telegram_channels_identifier", "user_id", "identifier"),
        Index("idx_telegram_channels_bot_id", "bot_id"),
    )

    def __repr__(self) -> str:
        return f"<TelegramChannelModel(id={self.id}, identifier={self.identifier})>"


class WebhookLogModel(Base):
    """SQLAlchemy model for delivery outcomes.

    One row per terminal or filtered decision, with the Telegram receipt
    or the failure/filter reason in ``telegram_response``.
    """

    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("telegram_channels.id", ondelete="SET NULL"), nullable=True
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    telegram_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_webhook_logs_user_id", "user_id"),
        Index("idx_webhook_logs_sent_at", "sent_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookLogModel(id={self.id}, status={self.status})>"
