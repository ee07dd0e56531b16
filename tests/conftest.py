"""
Shared pytest fixtures: in-memory database, DAOs, a controllable deck source
and card store builders.
"""

import copy
from datetime import UTC, datetime, timedelta

import pytest

from onenote_flashcards.card_store import CardStore
from onenote_flashcards.database import (
    Database,
    FlashcardDAO,
    PendingSaveDAO,
    StateDAO,
)
from onenote_flashcards.exceptions import RemoteUnavailableError
from onenote_flashcards.schemas import Card, Deck, IncomingDeck

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeDeckSource:
    """Deck source that records pushes and can be switched offline."""

    def __init__(self, decks: dict[str, IncomingDeck] | None = None):
        self.decks = decks or {}
        self.pushed: list[dict] = []
        self.available = True
        # Number of further pushes that succeed before the source goes offline
        self.fail_after: int | None = None

    def fetch_decks(self) -> dict[str, IncomingDeck]:
        if not self.available:
            raise RemoteUnavailableError("offline")
        return copy.deepcopy(self.decks)

    def push_decks(self, payload: dict[str, dict]) -> None:
        if self.fail_after is not None:
            if self.fail_after == 0:
                self.available = False
            else:
                self.fail_after -= 1
        if not self.available:
            raise RemoteUnavailableError("offline")
        self.pushed.append(copy.deepcopy(payload))


def make_card(question: str, **fields) -> Card:
    fields.setdefault("answer", f"Answer to {question}")
    return Card(question=question, **fields)


def make_deck(title: str, *cards: Card) -> Deck:
    return Deck(page_title=title, last_updated=NOW - timedelta(days=1), cards=list(cards))


@pytest.fixture
def db():
    """Create an in-memory database for testing."""
    return Database("sqlite:///:memory:")


@pytest.fixture
def state_dao(db):
    return StateDAO(db)


@pytest.fixture
def pending_dao(db):
    return PendingSaveDAO(db)


@pytest.fixture
def flashcard_dao(db):
    return FlashcardDAO(db)


@pytest.fixture
def source():
    return FakeDeckSource()


@pytest.fixture
def store(state_dao, pending_dao, source):
    """An empty card store for user-1."""
    return CardStore("user-1", state_dao, pending_dao, source)
