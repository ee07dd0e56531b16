"""
Database DAOs (Data Access Objects) for managing database operations.

Every structure is stored as one JSON document per row so that reads and
writes of a card store, statistics record or session are atomic.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, NamedTuple
from urllib.parse import urlparse

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from onenote_flashcards.models import (
    Base,
    ConfigModel,
    PageCacheModel,
    PageDeckModel,
    PendingSaveModel,
    SyncInfoModel,
    UserStateModel,
)
from onenote_flashcards.schemas import IncomingCard, IncomingDeck

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./db/flashcards.db"


class Database:
    """Database connection manager (SQLite by default, PostgreSQL supported)."""

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        self.database_url = database_url
        self.engine = self._create_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.create_tables()

    def _create_engine(self, database_url: str) -> Engine:
        """Create the database engine."""
        if database_url.startswith("sqlite"):
            if ":memory:" in database_url or database_url == "sqlite://":
                # All sessions must share the one in-memory connection
                return create_engine(
                    database_url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )

            db_file = database_url.split("///", 1)[-1]
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
            return create_engine(database_url, connect_args={"check_same_thread": False})

        # PostgreSQL configuration with connection pooling
        engine_kwargs = {
            "echo": False,
            "poolclass": QueuePool,
            "pool_size": 10,  # Number of connections to maintain
            "max_overflow": 20,  # Additional connections beyond pool_size
            "pool_timeout": 30,  # Timeout when getting connection from pool
            "pool_recycle": 3600,  # Recycle connections after 1 hour
            "pool_pre_ping": True,  # Validate connections before use
            "connect_args": {
                "connect_timeout": 10,
                "application_name": "onenote-flashcards",
            },
        }

        return create_engine(database_url, **engine_kwargs)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def test_connection(self) -> bool:
        """Test the database connection."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                return True
        except Exception:
            logger.exception("Database connection test failed")
            return False

    def get_db_info(self) -> dict:
        """Get database information."""
        parsed_url = urlparse(self.database_url)
        return {
            "database_type": parsed_url.scheme,
            "host": parsed_url.hostname or "local",
            "database": parsed_url.path.lstrip("/") or "flashcards",
            "connection_status": "connected" if self.test_connection() else "disconnected",
        }


class StateDAO:
    """Data Access Object for per-user state documents."""

    def __init__(self, db: Database):
        self.db = db

    def load(self, user_id: str, key: str) -> Any | None:
        """
        Load a state document.

        Returns:
            The decoded JSON value, or None if nothing is stored

        Raises:
            ValueError: If the stored document is not valid JSON
        """
        with self.db.get_session() as session:
            row = session.get(UserStateModel, (user_id, key))
            if row is None:
                return None
            return json.loads(row.value)

    def save(self, user_id: str, key: str, value: Any) -> None:
        """Replace a state document."""
        payload = json.dumps(value)
        with self.db.get_session() as session:
            row = session.get(UserStateModel, (user_id, key))
            if row:
                row.value = payload
            else:
                session.add(UserStateModel(user_id=user_id, key=key, value=payload))
            session.commit()

    def delete(self, user_id: str, key: str) -> bool:
        """Delete a state document."""
        with self.db.get_session() as session:
            row = session.get(UserStateModel, (user_id, key))
            if row:
                session.delete(row)
                session.commit()
                return True
            return False


class PendingSave(NamedTuple):
    """A queued card store push."""

    id: int
    created_at: datetime
    payload: dict


class PendingSaveDAO:
    """Data Access Object for the durable retry queue of card store pushes."""

    def __init__(self, db: Database):
        self.db = db

    def enqueue(self, user_id: str, payload: dict, created_at: datetime | None = None) -> int:
        """Append a payload to the user's queue."""
        with self.db.get_session() as session:
            row = PendingSaveModel(
                user_id=user_id,
                created_at=created_at or datetime.now(UTC),
                payload=json.dumps(payload),
            )
            session.add(row)
            session.commit()
            return row.id

    def list(self, user_id: str) -> list[PendingSave]:
        """Queued payloads, oldest first."""
        with self.db.get_session() as session:
            rows = (
                session.query(PendingSaveModel)
                .filter(PendingSaveModel.user_id == user_id)
                .order_by(PendingSaveModel.created_at, PendingSaveModel.id)
                .all()
            )
            return [PendingSave(row.id, row.created_at, json.loads(row.payload)) for row in rows]

    def delete(self, save_id: int) -> None:
        """Remove one payload after it has been sent."""
        with self.db.get_session() as session:
            row = session.get(PendingSaveModel, save_id)
            if row:
                session.delete(row)
                session.commit()

    def trim(self, user_id: str, keep: int) -> int:
        """
        Drop the oldest payloads so at most ``keep`` remain queued.

        Returns:
            Number of payloads dropped
        """
        with self.db.get_session() as session:
            rows = (
                session.query(PendingSaveModel)
                .filter(PendingSaveModel.user_id == user_id)
                .order_by(PendingSaveModel.created_at, PendingSaveModel.id)
                .all()
            )
            stale = rows[: max(len(rows) - keep, 0)]
            for row in stale:
                session.delete(row)
            session.commit()
            return len(stale)

    def count(self, user_id: str) -> int:
        """Number of queued payloads."""
        with self.db.get_session() as session:
            return (
                session.query(PendingSaveModel).filter(PendingSaveModel.user_id == user_id).count()
            )


class FlashcardDAO:
    """Data Access Object for the server-side flashcards of OneNote pages."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_deck(row: PageDeckModel) -> IncomingDeck:
        return IncomingDeck(
            page_title=row.page_title,
            last_updated=row.last_updated,
            cards=[IncomingCard.model_validate(card) for card in json.loads(row.cards)],
        )

    def get_decks(self, user_id: str) -> dict[str, IncomingDeck]:
        """Get all page decks for a user."""
        with self.db.get_session() as session:
            rows = (
                session.query(PageDeckModel)
                .filter(PageDeckModel.user_id == user_id)
                .order_by(PageDeckModel.page_id)
                .all()
            )
            return {row.page_id: self._to_deck(row) for row in rows}

    def get_deck(self, user_id: str, page_id: str) -> IncomingDeck | None:
        """Get the deck of one page."""
        with self.db.get_session() as session:
            row = session.get(PageDeckModel, (user_id, page_id))
            return self._to_deck(row) if row else None

    def save_deck(self, user_id: str, page_id: str, deck: IncomingDeck) -> None:
        """Create or replace the deck of one page."""
        self.save_decks(user_id, {page_id: deck})

    def save_decks(self, user_id: str, decks: dict[str, IncomingDeck]) -> int:
        """Create or replace several page decks in one transaction."""
        with self.db.get_session() as session:
            for page_id, deck in decks.items():
                cards = json.dumps(
                    [
                        card.model_dump(mode="json", by_alias=True, exclude_none=True)
                        for card in deck.cards
                    ]
                )
                row = session.get(PageDeckModel, (user_id, page_id))
                if row is None:
                    row = PageDeckModel(user_id=user_id, page_id=page_id)
                    session.add(row)
                row.page_title = deck.page_title
                row.last_updated = deck.last_updated
                row.cards = cards
            session.commit()
            return len(decks)


class PageCacheDAO:
    """Data Access Object for OneNote page processing timestamps."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, page_id: str) -> dict | None:
        with self.db.get_session() as session:
            row = session.get(PageCacheModel, page_id)
            if row is None:
                return None
            return {"last_modified": row.last_modified, "last_sync": row.last_sync}

    def touch(self, page_id: str, when: datetime) -> None:
        """Record that a page was processed."""
        with self.db.get_session() as session:
            row = session.get(PageCacheModel, page_id)
            if row is None:
                row = PageCacheModel(page_id=page_id)
                session.add(row)
            row.last_modified = when
            row.last_sync = when
            session.commit()


class SyncInfoDAO:
    """Data Access Object for sync bookkeeping documents."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, key: str) -> dict | None:
        with self.db.get_session() as session:
            row = session.get(SyncInfoModel, key)
            return json.loads(row.value) if row else None

    def set(self, key: str, value: dict) -> None:
        with self.db.get_session() as session:
            row = session.get(SyncInfoModel, key)
            if row:
                row.value = json.dumps(value)
            else:
                session.add(SyncInfoModel(key=key, value=json.dumps(value)))
            session.commit()

    def get_all(self) -> dict:
        with self.db.get_session() as session:
            return {row.key: json.loads(row.value) for row in session.query(SyncInfoModel).all()}


class ConfigDAO:
    """Data Access Object for Config operations."""

    def __init__(self, db: Database):
        self.db = db

    def set(self, key: str, value: str) -> None:
        """Set a configuration value."""
        with self.db.get_session() as session:
            config_model = session.query(ConfigModel).filter(ConfigModel.key == key).first()
            if config_model:
                config_model.value = value
            else:
                config_model = ConfigModel(key=key, value=value)
                session.add(config_model)
            session.commit()

    def get(self, key: str, default: str | None = None) -> str | None:
        """Get a configuration value."""
        with self.db.get_session() as session:
            config_model = session.query(ConfigModel).filter(ConfigModel.key == key).first()
            return config_model.value if config_model else default

    def get_all(self) -> dict:
        """Get all configuration values."""
        with self.db.get_session() as session:
            configs = session.query(ConfigModel).all()
            return {config.key: config.value for config in configs}
