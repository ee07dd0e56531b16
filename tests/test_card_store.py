"""
Tests for the card store: merge rules, editing and local-first persistence.
"""

from datetime import timedelta

import pytest
from conftest import NOW, make_card, make_deck
from pydantic import ValidationError

from onenote_flashcards.card_store import CardStore, merge_card, merge_deck_cards
from onenote_flashcards.exceptions import CardNotFoundError, DeckNotFoundError
from onenote_flashcards.models import UserStateModel
from onenote_flashcards.schemas import (
    BatchEditRequest,
    CardCreate,
    CardUpdate,
    IncomingCard,
    IncomingDeck,
    QueueEntry,
)


def incoming_deck(title, *cards, last_updated=NOW):
    return IncomingDeck(page_title=title, last_updated=last_updated, cards=list(cards))


@pytest.fixture
def studied_store(store):
    """A store with one deck whose first card has review progress."""
    store.decks["page-1"] = make_deck(
        "Cells",
        make_card(
            "What is a cell?",
            id="c1",
            interval=10,
            ease=2.1,
            due=NOW + timedelta(days=3),
            review_count=4,
            tags=["bio"],
        ),
        make_card("What is DNA?", id="c2"),
    )
    return store


class TestMerge:
    """Test reconciling incoming decks with local state."""

    def test_new_deck_gets_default_scheduling(self, store):
        result = store.merge(
            {"page-1": incoming_deck("Cells", IncomingCard(question="Q1", answer="A1"))}
        )

        card = store.decks["page-1"].cards[0]
        assert result.decks_added == 1
        assert result.cards_added == 1
        assert card.interval == 0
        assert card.ease == 2.5
        assert card.review_count == 0
        assert card.due is None
        assert card.id

    def test_absent_fields_keep_local_progress(self, studied_store):
        studied_store.merge(
            {
                "page-1": incoming_deck(
                    "Cells (edited)",
                    IncomingCard(question="What is a cell?", answer="The unit of life"),
                )
            }
        )

        deck = studied_store.decks["page-1"]
        card = deck.cards[0]
        assert deck.page_title == "Cells (edited)"
        assert card.answer == "The unit of life"
        assert card.interval == 10
        assert card.ease == 2.1
        assert card.review_count == 4
        assert card.due == NOW + timedelta(days=3)
        assert card.tags == ["bio"]

    def test_explicit_incoming_field_wins(self, studied_store):
        studied_store.merge(
            {
                "page-1": incoming_deck(
                    "Cells",
                    IncomingCard(question="What is a cell?", answer="A", interval=20, ease=2.4),
                )
            }
        )

        card = studied_store.decks["page-1"].cards[0]
        assert card.interval == 20
        assert card.ease == 2.4
        assert card.review_count == 4

    def test_merge_is_additive(self, studied_store):
        result = studied_store.merge(
            {"page-1": incoming_deck("Cells", IncomingCard(question="New question", answer="A"))}
        )

        questions = [card.question for card in studied_store.decks["page-1"].cards]
        assert questions == ["What is a cell?", "What is DNA?", "New question"]
        assert result.cards_added == 1
        assert result.decks_updated == 1

    def test_match_by_id_before_question(self, studied_store):
        studied_store.merge(
            {
                "page-1": incoming_deck(
                    "Cells", IncomingCard(id="c1", question="Reworded", answer="A")
                )
            }
        )

        cards = studied_store.decks["page-1"].cards
        assert len(cards) == 2
        assert cards[0].question == "Reworded"
        assert cards[0].review_count == 4

    def test_resync_is_idempotent(self, store):
        payload = {
            "page-1": incoming_deck(
                "Cells",
                IncomingCard(question="Q1", answer="A1"),
                IncomingCard(question="Q2", answer="A2"),
            )
        }
        store.merge(payload)
        store.decks["page-1"].cards[0].review_count = 2
        ids = [card.id for card in store.decks["page-1"].cards]

        result = store.merge(payload)

        assert result.cards_added == 0
        assert result.cards_matched == 2
        assert [card.id for card in store.decks["page-1"].cards] == ids
        assert store.decks["page-1"].cards[0].review_count == 2

    def test_other_decks_untouched(self, studied_store):
        studied_store.merge({"page-2": incoming_deck("Genes")})

        assert set(studied_store.decks) == {"page-1", "page-2"}
        assert studied_store.decks["page-1"].cards[0].review_count == 4


@pytest.mark.parametrize(
    "fields", [{"interval": -1}, {"review_count": -2}, {"ease": 0.0}, {"ease": -1.5}]
)
def test_incoming_card_rejects_out_of_range_scheduling(fields):
    with pytest.raises(ValidationError):
        IncomingCard(question="Q", **fields)


def test_merged_card_is_validated():
    local = make_card("What is a cell?", id="c1", interval=10, review_count=4)
    incoming = IncomingCard.model_construct(question="What is a cell?", answer="A", interval=-1)

    with pytest.raises(ValidationError):
        merge_card(local, incoming)

    assert local.interval == 10


def test_merge_card_returns_new_card():
    local = make_card("What is a cell?", id="c1", interval=10, review_count=4)

    merged = merge_card(local, IncomingCard(question="What is a cell?", answer="A", ease=2.2))

    assert merged is not local
    assert (merged.id, merged.interval, merged.ease) == ("c1", 10, 2.2)
    assert local.answer == "Answer to What is a cell?"


def test_duplicate_questions_match_one_card_each():
    deck = make_deck("Dupes", make_card("Same?", id="a", review_count=1))

    added, matched = merge_deck_cards(
        deck,
        [
            IncomingCard(question="Same?", answer="first"),
            IncomingCard(question="Same?", answer="second"),
        ],
    )

    assert (added, matched) == (1, 1)
    assert [card.answer for card in deck.cards] == ["first", "second"]
    assert deck.cards[0].review_count == 1
    assert deck.cards[1].review_count == 0


def test_incoming_id_collision_gets_fresh_id():
    deck = make_deck("Deck", make_card("Q", id="x"))

    merge_deck_cards(
        deck,
        [IncomingCard(id="x", question="Q", answer="A"), IncomingCard(id="x", question="Other")],
    )

    assert len(deck.cards) == 2
    assert deck.cards[1].id != "x"


class TestEditing:
    """Test manual card creation and edits."""

    def test_add_card(self, studied_store):
        card = studied_store.add_card(
            "page-1", CardCreate(question=" Why? ", answer="Because", tags=["x"]), NOW
        )

        assert studied_store.decks["page-1"].cards[-1] is card
        assert card.question == "Why?"
        assert card.created == NOW
        assert card.is_new

    def test_add_card_unknown_deck(self, store):
        with pytest.raises(DeckNotFoundError):
            store.add_card("missing", CardCreate(question="Q", answer="A"))

    def test_edit_card_keeps_scheduling(self, studied_store):
        card = studied_store.edit_card(
            "page-1", "c1", CardUpdate(answer="Edited", tags=["bio", "exam"])
        )

        assert card.answer == "Edited"
        assert card.tags == ["bio", "exam"]
        assert card.interval == 10
        assert card.review_count == 4

    def test_edit_unknown_card(self, studied_store):
        with pytest.raises(CardNotFoundError):
            studied_store.edit_card("page-1", "nope", CardUpdate(answer="x"))

    def test_batch_edit(self, studied_store):
        result = studied_store.batch_edit(
            BatchEditRequest(
                deck_ids=["page-1"], add_tags=["exam"], remove_tags=["bio"], suspend=True
            )
        )

        cards = studied_store.decks["page-1"].cards
        assert result.cards_edited == 2
        assert result.decks_edited == 1
        assert all(card.tags == ["exam"] for card in cards)
        assert all(card.suspended for card in cards)

    def test_batch_edit_validates_all_decks_first(self, studied_store):
        with pytest.raises(DeckNotFoundError):
            studied_store.batch_edit(
                BatchEditRequest(deck_ids=["page-1", "missing"], add_tags=["exam"])
            )

        assert studied_store.decks["page-1"].cards[1].tags == []

    def test_all_tags(self, studied_store):
        studied_store.decks["page-1"].cards[1].tags = ["genetics", "bio"]
        assert studied_store.all_tags() == ["bio", "genetics"]


class TestResolve:
    """Test queue entry resolution."""

    def test_resolve_by_id_after_reorder(self, studied_store):
        studied_store.decks["page-1"].cards.reverse()
        entry = QueueEntry(deck_id="page-1", card_index=0, card_id="c1", type="review")

        index, card = studied_store.resolve(entry)

        assert index == 1
        assert card.id == "c1"

    def test_resolve_by_index_without_id(self, studied_store):
        entry = QueueEntry(deck_id="page-1", card_index=1, type="new")
        assert studied_store.resolve(entry)[1].id == "c2"

    @pytest.mark.parametrize(
        "entry",
        [
            QueueEntry(deck_id="gone", card_index=0, card_id="c1", type="review"),
            QueueEntry(deck_id="page-1", card_index=0, card_id="deleted", type="review"),
            QueueEntry(deck_id="page-1", card_index=9, type="new"),
        ],
    )
    def test_stale_entries(self, studied_store, entry):
        assert studied_store.resolve(entry) is None


class TestPersistence:
    """Test local-first commits and the pending-save queue."""

    def test_commit_saves_then_pushes(self, studied_store, state_dao, source):
        assert studied_store.commit(NOW) is True

        saved = state_dao.load("user-1", CardStore.STATE_KEY)
        assert saved["page-1"]["pageTitle"] == "Cells"
        assert saved["page-1"]["cards"][0]["reviewCount"] == 4
        assert source.pushed == [saved]

    def test_failed_push_is_queued(self, studied_store, state_dao, source):
        source.available = False

        assert studied_store.commit(NOW) is False

        assert state_dao.load("user-1", CardStore.STATE_KEY) is not None
        assert studied_store.pending_count() == 1
        assert source.pushed == []

    def test_flush_sends_in_fifo_order(self, studied_store, source):
        source.available = False
        for minute in range(3):
            studied_store.add_card("page-1", CardCreate(question=f"Q{minute}", answer="A"))
            studied_store.commit(NOW + timedelta(minutes=minute))

        source.available = True
        result = studied_store.flush_pending()

        assert (result.sent, result.remaining) == (3, 0)
        assert [len(payload["page-1"]["cards"]) for payload in source.pushed] == [3, 4, 5]
        assert studied_store.pending_count() == 0

    def test_partial_flush_keeps_unsent_suffix(self, studied_store, source, pending_dao):
        source.available = False
        for minute in range(3):
            studied_store.add_card("page-1", CardCreate(question=f"Q{minute}", answer="A"))
            studied_store.commit(NOW + timedelta(minutes=minute))

        source.available = True
        source.fail_after = 1
        result = studied_store.flush_pending()

        assert (result.sent, result.remaining) == (1, 2)
        remaining = pending_dao.list("user-1")
        assert [len(save.payload["page-1"]["cards"]) for save in remaining] == [4, 5]

    def test_push_with_backlog_preserves_order(self, studied_store, source):
        source.available = False
        studied_store.commit(NOW)

        source.available = True
        studied_store.add_card("page-1", CardCreate(question="Later", answer="A"))
        assert studied_store.push(NOW + timedelta(minutes=1)) is True

        assert [len(payload["page-1"]["cards"]) for payload in source.pushed] == [2, 3]
        assert studied_store.pending_count() == 0

    def test_offline_queue_keeps_newest_snapshots(self, studied_store, source, pending_dao):
        studied_store.MAX_PENDING_SAVES = 2
        source.available = False
        for minute in range(4):
            studied_store.add_card("page-1", CardCreate(question=f"Q{minute}", answer="A"))
            studied_store.commit(NOW + timedelta(minutes=minute))

        remaining = pending_dao.list("user-1")
        assert [len(save.payload["page-1"]["cards"]) for save in remaining] == [5, 6]

        source.available = True
        assert studied_store.flush_pending().sent == 2
        assert len(source.pushed[-1]["page-1"]["cards"]) == 6

    def test_load_round_trip(self, studied_store, state_dao, pending_dao, source):
        studied_store.save()

        reloaded = CardStore("user-1", state_dao, pending_dao, source)
        decks = reloaded.load()

        assert decks["page-1"].cards[0].due == NOW + timedelta(days=3)
        assert decks["page-1"].cards[0].id == "c1"

    def test_corrupt_store_starts_empty(self, db, store):
        with db.get_session() as session:
            session.add(UserStateModel(user_id="user-1", key=CardStore.STATE_KEY, value="{oops"))
            session.commit()

        assert store.load() == {}

    def test_unreadable_card_drops_only_that_card(self, state_dao, store):
        state_dao.save(
            "user-1",
            CardStore.STATE_KEY,
            {
                "page-1": {
                    "pageTitle": "Cells",
                    "cards": [
                        {"id": "bad", "question": "Q1", "interval": -1},
                        {"id": "good", "question": "Q2", "interval": 4, "reviewCount": 2},
                    ],
                },
                "page-2": {"pageTitle": "Genes", "cards": [{"question": "Q3"}]},
            },
        )

        decks = store.load()

        assert set(decks) == {"page-1", "page-2"}
        assert [card.id for card in decks["page-1"].cards] == ["good"]
        assert decks["page-1"].cards[0].review_count == 2
        assert decks["page-2"].cards[0].question == "Q3"

    def test_unreadable_deck_drops_only_that_deck(self, state_dao, store):
        state_dao.save(
            "user-1",
            CardStore.STATE_KEY,
            {
                "page-1": ["not", "a", "deck"],
                "page-2": {"pageTitle": "Genes", "lastUpdated": "yesterday", "cards": []},
                "page-3": {"pageTitle": "Cells", "cards": [{"question": "Q"}]},
            },
        )

        assert set(store.load()) == {"page-3"}

    def test_remote_resync_never_loses_other_decks(self, studied_store, state_dao, pending_dao):
        studied_store.decks["page-2"] = make_deck("Genes", make_card("What is a gene?"))
        studied_store.merge(
            {"page-1": incoming_deck("Cells", IncomingCard(question="What is a cell?", ease=2.0))}
        )
        studied_store.save()

        reloaded = CardStore("user-1", state_dao, pending_dao, studied_store.source).load()

        assert set(reloaded) == {"page-1", "page-2"}
        assert reloaded["page-1"].cards[0].ease == 2.0
        assert reloaded["page-1"].cards[0].review_count == 4

    def test_users_are_isolated(self, studied_store, state_dao, pending_dao, source):
        studied_store.save()

        other = CardStore("user-2", state_dao, pending_dao, source)
        assert other.load() == {}
