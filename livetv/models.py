"""
SQLAlchemy ORM Models for the Live TV service

Users own a liveTV configuration; channels and programs are replaced per user
on every successful sync.
"""
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """User account; only the liveTV configuration matters to the sync engine"""
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String, primary_key=True)
    live_tv: Mapped[Any | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User(username={self.username})>"


class Channel(Base):
    """Channel parsed from a user's M3U playlist"""
    __tablename__ = "channels"

    username: Mapped[str] = mapped_column(String, primary_key=True)
    channel_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    tvg_id: Mapped[str | None] = mapped_column(String, nullable=True)
    tvg_name: Mapped[str | None] = mapped_column(String, nullable=True)
    tvg_logo: Mapped[str | None] = mapped_column(Text, nullable=True)
    group_title: Mapped[str | None] = mapped_column(String, nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_channels_username", "username"),
    )

    def __repr__(self) -> str:
        return f"<Channel(username={self.username}, channel_id={self.channel_id}, name={self.name})>"


class Program(Base):
    """Programme parsed from a user's XMLTV guide"""
    __tablename__ = "programs"

    username: Mapped[str] = mapped_column(String, primary_key=True)
    channel_id: Mapped[str] = mapped_column(String, primary_key=True)
    start: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    stop: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    icon: Mapped[str | None] = mapped_column(Text, nullable=True)
    episode: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_programs_username", "username"),
        Index("idx_programs_channel_start", "username", "channel_id", "start"),
    )

    def __repr__(self) -> str:
        return f"<Program(username={self.username}, channel={self.channel_id}, title={self.title})>"
