"""
Due-card classification over a card store snapshot.

Every non-suspended card is at most one of:
- new: never scheduled (no due date)
- due: due date at or before now
- in progress: scheduled in the future after at least one review

Suspended cards are counted separately and never classified. A card
scheduled in the future without any review is "scheduled" and falls in
none of the three groups.
"""

from collections.abc import Iterable, Iterator, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import NamedTuple

from onenote_flashcards.scheduler import is_card_due
from onenote_flashcards.schemas import Card, Deck, DueCounts, DueCountsResponse


class CardStatus(str, Enum):
    """Scheduling classification of a card."""

    NEW = "new"
    DUE = "due"
    IN_PROGRESS = "in_progress"
    SCHEDULED = "scheduled"
    SUSPENDED = "suspended"


class ClassifiedCard(NamedTuple):
    """A card located in the store together with its classification."""

    deck_id: str
    card_index: int
    card: Card
    status: CardStatus


def classify_card(card: Card, now: datetime | None = None) -> CardStatus:
    """Classify a single card at the given instant."""
    if card.suspended:
        return CardStatus.SUSPENDED
    if card.due is None:
        # Cards with reviews but no due date are treated as new
        return CardStatus.NEW
    if is_card_due(card.due, now):
        return CardStatus.DUE
    if card.review_count == 0:
        return CardStatus.SCHEDULED
    return CardStatus.IN_PROGRESS


def matches_tags(card: Card, tags: Iterable[str]) -> bool:
    """True if no tag filter is given or the card shares a tag with it."""
    wanted = set(tags)
    if not wanted:
        return True
    return not wanted.isdisjoint(card.tags)


def collect_cards(
    decks: Mapping[str, Deck],
    status: CardStatus,
    now: datetime | None = None,
    tags: Iterable[str] = (),
) -> Iterator[ClassifiedCard]:
    """
    Yield cards of one status in store order (deck order, then card order).

    Args:
        decks: The card store mapping
        status: Which classification to collect
        now: Classification instant
        tags: Optional tag filter; a card matches if it has any of the tags
    """
    if now is None:
        now = datetime.now(UTC)
    tags = list(tags)
    for deck_id, deck in decks.items():
        for index, card in enumerate(deck.cards):
            if classify_card(card, now) != status:
                continue
            if matches_tags(card, tags):
                yield ClassifiedCard(deck_id, index, card, status)


def count_cards(cards: Iterable[Card], now: datetime | None = None) -> DueCounts:
    """Count cards per classification."""
    if now is None:
        now = datetime.now(UTC)
    counts = DueCounts()
    for card in cards:
        counts.total_count += 1
        status = classify_card(card, now)
        if status == CardStatus.NEW:
            counts.new_count += 1
        elif status == CardStatus.DUE:
            counts.due_count += 1
        elif status == CardStatus.IN_PROGRESS:
            counts.in_progress_count += 1
        elif status == CardStatus.SUSPENDED:
            counts.suspended_count += 1
    return counts


def get_due_counts(decks: Mapping[str, Deck], now: datetime | None = None) -> DueCountsResponse:
    """
    Count new, due and in-progress cards globally and per deck.

    Args:
        decks: The card store mapping
        now: Classification instant

    Returns:
        DueCountsResponse with overall and per-deck counts
    """
    if now is None:
        now = datetime.now(UTC)

    per_deck = {deck_id: count_cards(deck.cards, now) for deck_id, deck in decks.items()}

    overall = DueCounts()
    for counts in per_deck.values():
        overall.new_count += counts.new_count
        overall.due_count += counts.due_count
        overall.in_progress_count += counts.in_progress_count
        overall.suspended_count += counts.suspended_count
        overall.total_count += counts.total_count

    return DueCountsResponse(overall=overall, decks=per_deck)
