"""
SQLAlchemy ORM models for database tables.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class UserStateModel(Base):
    """SQLAlchemy model for per-user study state documents (cards, stats, session, settings)."""

    __tablename__ = "user_state"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # JSON document
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class PendingSaveModel(Base):
    """SQLAlchemy model for card store pushes waiting to be retried."""

    __tablename__ = "pending_saves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON card store snapshot


class PageDeckModel(Base):
    """SQLAlchemy model for the server-side flashcards of one OneNote page."""

    __tablename__ = "page_decks"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    page_id: Mapped[str] = mapped_column(String, primary_key=True)
    page_title: Mapped[str] = mapped_column(String, nullable=False, default="")
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cards: Mapped[str] = mapped_column(Text, nullable=False, default="[]")  # JSON list


class PageCacheModel(Base):
    """SQLAlchemy model for OneNote page processing timestamps."""

    __tablename__ = "page_cache"

    page_id: Mapped[str] = mapped_column(String, primary_key=True)
    last_modified: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SyncInfoModel(Base):
    """SQLAlchemy model for per-section sync bookkeeping."""

    __tablename__ = "sync_info"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # JSON document


class ConfigModel(Base):
    """SQLAlchemy model for config table."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
