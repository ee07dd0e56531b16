"""
Card store: deck-id -> Deck mapping with merge and persistence policy.

Every mutation is committed to local state first, then pushed to the deck
source. A failed push is appended to a durable queue that is flushed in
FIFO order once the source is reachable again.
"""

import logging
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime

from pydantic import ValidationError

from onenote_flashcards.database import PendingSaveDAO, StateDAO
from onenote_flashcards.deck_source import DeckSource
from onenote_flashcards.exceptions import (
    CardNotFoundError,
    DeckNotFoundError,
    RemoteUnavailableError,
)
from onenote_flashcards.schemas import (
    BatchEditRequest,
    BatchEditResult,
    Card,
    CardCreate,
    CardUpdate,
    Deck,
    FlushResult,
    IncomingCard,
    IncomingDeck,
    MergeResult,
    QueueEntry,
    clean_tags,
    new_card_id,
)

logger = logging.getLogger(__name__)

# Scheduling fields where an explicit incoming value wins over local state
SCHEDULING_FIELDS = ("interval", "ease", "due", "review_count", "suspended", "created")


def card_from_incoming(incoming: IncomingCard) -> Card:
    """Create a card from incoming data, defaulting absent scheduling fields."""
    data = incoming.model_dump(exclude_none=True)
    return Card.model_validate(data)


def merge_card(local: Card, incoming: IncomingCard) -> Card:
    """
    Merge an incoming card into a matched local card.

    Content comes from the incoming card. Scheduling fields are only taken
    from the incoming card when it explicitly supplies them. The merged card
    is validated as a whole and returned; the local card is left untouched.
    """
    updates = {"question": incoming.question, "answer": incoming.answer}
    if incoming.tags:
        updates["tags"] = incoming.tags
    for field in SCHEDULING_FIELDS:
        value = getattr(incoming, field)
        if value is not None:
            updates[field] = value
    return Card.model_validate({**local.model_dump(), **updates})


def merge_deck_cards(deck: Deck, incoming_cards: list[IncomingCard]) -> tuple[int, int]:
    """
    Merge incoming cards into an existing deck.

    Cards are matched by id, then by identical question text. Each local card
    matches at most one incoming card. Unmatched local cards are kept.

    Returns:
        Tuple of (cards added, cards matched)
    """
    by_id = {card.id: index for index, card in enumerate(deck.cards)}
    by_question: dict[str, list[int]] = {}
    for index, card in enumerate(deck.cards):
        by_question.setdefault(card.question, []).append(index)

    matched_ids: set[str] = set()
    added = matched = 0

    for incoming in incoming_cards:
        position = None
        if incoming.id and incoming.id in by_id and incoming.id not in matched_ids:
            position = by_id[incoming.id]
        else:
            for candidate in by_question.get(incoming.question, []):
                if deck.cards[candidate].id not in matched_ids:
                    position = candidate
                    break

        if position is None:
            card = card_from_incoming(incoming)
            if card.id in by_id:
                card.id = new_card_id()
            deck.cards.append(card)
            by_id[card.id] = len(deck.cards) - 1
            matched_ids.add(card.id)
            added += 1
            continue

        card = merge_card(deck.cards[position], incoming)
        deck.cards[position] = card
        matched_ids.add(card.id)
        matched += 1

    return added, matched


class CardStore:
    """A user's decks and cards with local-first persistence."""

    STATE_KEY = "cards"
    # Each queued payload is a full store snapshot, so older ones are superseded
    MAX_PENDING_SAVES = 50

    def __init__(
        self,
        user_id: str,
        state_dao: StateDAO,
        pending_dao: PendingSaveDAO,
        source: DeckSource,
    ):
        self.user_id = user_id
        self.state_dao = state_dao
        self.pending_dao = pending_dao
        self.source = source
        self.decks: dict[str, Deck] = {}

    # Loading and serialisation
    def load(self) -> dict[str, Deck]:
        """
        Load the locally persisted card store.

        An unreadable document starts the store empty. Inside a readable
        document only the unreadable decks or cards are dropped.
        """
        try:
            data = self.state_dao.load(self.user_id, self.STATE_KEY) or {}
        except ValueError as e:
            logger.warning("Discarding unreadable card store for user %s: %s", self.user_id, e)
            data = {}
        if not isinstance(data, dict):
            logger.warning("Discarding card store for user %s: not a mapping", self.user_id)
            data = {}

        self.decks = {}
        for deck_id, deck_data in data.items():
            deck = self._load_deck(deck_id, deck_data)
            if deck is not None:
                self.decks[deck_id] = deck
        return self.decks

    def _load_deck(self, deck_id: str, data) -> Deck | None:
        try:
            return Deck.model_validate(data)
        except ValidationError:
            pass

        if not isinstance(data, dict):
            logger.warning("Dropping unreadable deck %s for user %s", deck_id, self.user_id)
            return None
        cards = data.get("cards")
        try:
            deck = Deck.model_validate({**data, "cards": []})
        except ValidationError as e:
            logger.warning("Dropping unreadable deck %s for user %s: %s", deck_id, self.user_id, e)
            return None

        dropped = 0
        for card in cards if isinstance(cards, list) else []:
            if not card:
                continue
            try:
                deck.cards.append(Card.model_validate(card))
            except ValidationError:
                dropped += 1
        logger.warning(
            "Dropped %d unreadable cards from deck %s for user %s", dropped, deck_id, self.user_id
        )
        return deck

    def to_payload(self) -> dict[str, dict]:
        return {
            deck_id: deck.model_dump(mode="json", by_alias=True)
            for deck_id, deck in self.decks.items()
        }

    # Queries
    def get_deck(self, deck_id: str) -> Deck:
        deck = self.decks.get(deck_id)
        if deck is None:
            raise DeckNotFoundError(f"Deck not found: {deck_id}")
        return deck

    def find_card(self, deck_id: str, card_id: str) -> tuple[int, Card]:
        """Locate a card by id. Raises DeckNotFoundError or CardNotFoundError."""
        deck = self.get_deck(deck_id)
        for index, card in enumerate(deck.cards):
            if card.id == card_id:
                return index, card
        raise CardNotFoundError(f"Card {card_id} not found in deck {deck_id}")

    def resolve(self, entry: QueueEntry) -> tuple[int, Card] | None:
        """Resolve a queue entry to a live card, or None if it is stale."""
        deck = self.decks.get(entry.deck_id)
        if deck is None:
            return None
        if entry.card_id:
            for index, card in enumerate(deck.cards):
                if card.id == entry.card_id:
                    return index, card
            return None
        if entry.card_index < len(deck.cards):
            return entry.card_index, deck.cards[entry.card_index]
        return None

    def iter_cards(self) -> Iterator[tuple[str, int, Card]]:
        for deck_id, deck in self.decks.items():
            for index, card in enumerate(deck.cards):
                yield deck_id, index, card

    def all_tags(self) -> list[str]:
        return sorted({tag for _, _, card in self.iter_cards() for tag in card.tags})

    # Mutations
    def merge(self, incoming: Mapping[str, IncomingDeck]) -> MergeResult:
        """
        Reconcile incoming decks with local scheduling state.

        New decks are adopted with defaulted scheduling fields. Existing decks
        take the incoming title and timestamp, and their cards are merged
        without ever deleting a local card.
        """
        result = MergeResult()
        for deck_id, incoming_deck in incoming.items():
            local = self.decks.get(deck_id)
            if local is None:
                deck = Deck(
                    page_title=incoming_deck.page_title,
                    last_updated=incoming_deck.last_updated,
                )
                added, _ = merge_deck_cards(deck, incoming_deck.cards)
                self.decks[deck_id] = deck
                result.decks_added += 1
                result.cards_added += added
                continue

            if incoming_deck.page_title:
                local.page_title = incoming_deck.page_title
            if incoming_deck.last_updated is not None:
                local.last_updated = incoming_deck.last_updated
            added, matched = merge_deck_cards(local, incoming_deck.cards)
            result.decks_updated += 1
            result.cards_added += added
            result.cards_matched += matched

        logger.info(
            "Merged decks for user %s: %d added, %d updated, %d new cards, %d matched",
            self.user_id,
            result.decks_added,
            result.decks_updated,
            result.cards_added,
            result.cards_matched,
        )
        return result

    def add_card(self, deck_id: str, data: CardCreate, now: datetime | None = None) -> Card:
        """Append a manually created card to a deck."""
        deck = self.get_deck(deck_id)
        card = Card(
            question=data.question,
            answer=data.answer,
            tags=data.tags,
            created=now or datetime.now(UTC),
        )
        deck.cards.append(card)
        return card

    def edit_card(self, deck_id: str, card_id: str, data: CardUpdate) -> Card:
        """Edit a card's content, tags or suspension. Scheduling is untouched."""
        _, card = self.find_card(deck_id, card_id)
        if data.question is not None:
            card.question = data.question
        if data.answer is not None:
            card.answer = data.answer
        if data.tags is not None:
            card.tags = data.tags
        if data.suspended is not None:
            card.suspended = data.suspended
        return card

    def batch_edit(self, request: BatchEditRequest) -> BatchEditResult:
        """Apply tag and suspend edits to every card of the given decks."""
        for deck_id in request.deck_ids:
            self.get_deck(deck_id)

        cards_edited = 0
        remove = set(request.remove_tags)
        for deck_id in request.deck_ids:
            for card in self.decks[deck_id].cards:
                card.tags = clean_tags(
                    [tag for tag in card.tags if tag not in remove] + request.add_tags
                )
                if request.suspend:
                    card.suspended = True
                cards_edited += 1

        return BatchEditResult(cards_edited=cards_edited, decks_edited=len(request.deck_ids))

    # Persistence
    def save(self) -> None:
        """Persist the whole card store locally."""
        self.state_dao.save(self.user_id, self.STATE_KEY, self.to_payload())

    def push(self, now: datetime | None = None) -> bool:
        """
        Best-effort push of the current store to the deck source.

        Returns:
            True if the store reached the source, False if it was queued
        """
        payload = self.to_payload()

        if self.pending_dao.count(self.user_id):
            # Older queued saves must reach the source first
            self.pending_dao.enqueue(self.user_id, payload, created_at=now)
            self._trim_pending()
            return self.flush_pending().remaining == 0

        try:
            self.source.push_decks(payload)
            return True
        except RemoteUnavailableError as e:
            logger.warning("Push failed for user %s, queued for retry: %s", self.user_id, e)
            self.pending_dao.enqueue(self.user_id, payload, created_at=now)
            self._trim_pending()
            return False

    def _trim_pending(self) -> None:
        dropped = self.pending_dao.trim(self.user_id, self.MAX_PENDING_SAVES)
        if dropped:
            logger.info(
                "Dropped %d superseded pending saves for user %s", dropped, self.user_id
            )

    def commit(self, now: datetime | None = None) -> bool:
        """Save locally, then push. Local state is durable before any network call."""
        self.save()
        return self.push(now)

    def flush_pending(self) -> FlushResult:
        """
        Send queued saves oldest first.

        Stops at the first failure so the unsent suffix stays queued in order.
        """
        sent = 0
        pending = self.pending_dao.list(self.user_id)
        for save in pending:
            try:
                self.source.push_decks(save.payload)
            except RemoteUnavailableError as e:
                logger.warning(
                    "Flush stopped for user %s after %d of %d saves: %s",
                    self.user_id,
                    sent,
                    len(pending),
                    e,
                )
                break
            self.pending_dao.delete(save.id)
            sent += 1

        remaining = len(pending) - sent
        if sent:
            logger.info("Flushed %d pending saves for user %s", sent, self.user_id)
        return FlushResult(sent=sent, remaining=remaining)

    def pending_count(self) -> int:
        return self.pending_dao.count(self.user_id)

