"""
Tests for study statistics recording and reports.
"""

from datetime import date, timedelta

import pytest
from conftest import NOW, make_card, make_deck

from onenote_flashcards.scheduler import Rating, calculate_next_review
from onenote_flashcards.schemas import DueCounts, StudyStats
from onenote_flashcards.statistics import StudyStatsRecorder, heat_level, retention


def review(recorder, card, rating, deck_id="d1", now=NOW):
    result = calculate_next_review(rating, card.interval, card.ease, card.review_count, now=now)
    return recorder.record_review(deck_id, card, rating, result, card_index=0, now=now)


@pytest.mark.parametrize(
    "correct,total,expected",
    [(0, 0, 0.0), (1, 3, 33.3), (2, 3, 66.7), (5, 5, 100.0)],
)
def test_retention(correct, total, expected):
    assert retention(correct, total) == expected


@pytest.mark.parametrize(
    "count,level",
    [(0, "heat-0"), (1, "heat-1"), (4, "heat-1"), (5, "heat-2"), (19, "heat-3"), (20, "heat-4")],
)
def test_heat_level(count, level):
    assert heat_level(count) == level


class TestRecordReview:
    """Test counters updated per rating."""

    def test_first_review_counts_card_studied(self):
        recorder = StudyStatsRecorder()

        review(recorder, make_card("Q"), Rating.GOOD)

        stats = recorder.stats
        assert stats.cards_studied == 1
        assert stats.total_reviews == 1
        assert stats.correct_reviews == 1
        assert stats.deck_stats["d1"].cards_studied == 1

    def test_repeat_review_not_counted_as_new_card(self):
        recorder = StudyStatsRecorder()

        review(recorder, make_card("Q", review_count=2, interval=3, due=NOW), Rating.HARD)

        assert recorder.stats.cards_studied == 0
        assert recorder.stats.total_reviews == 1
        assert recorder.stats.correct_reviews == 0

    def test_history_entry(self):
        recorder = StudyStatsRecorder()
        card = make_card("Q", id="card-1", interval=10, ease=2.0, review_count=1, due=NOW)

        entry = review(recorder, card, Rating.EASY)

        assert entry.card_id == "card-1"
        assert entry.rating == "easy"
        assert entry.previous_interval == 10
        assert entry.new_interval == 26
        assert entry.date == NOW

    def test_history_is_bounded(self):
        recorder = StudyStatsRecorder()
        card = make_card("Q")

        for i in range(1005):
            review(recorder, card, Rating.AGAIN, now=NOW + timedelta(seconds=i))

        history = recorder.stats.review_history
        assert len(history) == 1000
        assert history[0].date == NOW + timedelta(seconds=5)
        assert recorder.stats.total_reviews == 1005


class TestStreak:
    """Test daily streak tracking."""

    def test_first_day(self):
        recorder = StudyStatsRecorder()
        assert recorder.update_streak(date(2025, 1, 15)) == 1

    def test_same_day_keeps_streak(self):
        recorder = StudyStatsRecorder(StudyStats(streak_days=3, last_study_date=date(2025, 1, 15)))
        assert recorder.update_streak(date(2025, 1, 15)) == 3

    def test_consecutive_day_extends(self):
        recorder = StudyStatsRecorder(StudyStats(streak_days=3, last_study_date=date(2025, 1, 14)))
        assert recorder.update_streak(date(2025, 1, 15)) == 4

    def test_gap_resets(self):
        recorder = StudyStatsRecorder(StudyStats(streak_days=3, last_study_date=date(2025, 1, 12)))
        assert recorder.update_streak(date(2025, 1, 15)) == 1
        assert recorder.stats.last_study_date == date(2025, 1, 15)


def test_add_study_time_ignores_non_positive():
    recorder = StudyStatsRecorder()

    recorder.add_study_time(12)
    recorder.add_study_time(0)
    recorder.add_study_time(-3)

    assert recorder.stats.study_time_minutes == 12


class TestReports:
    """Test overview, detailed statistics and heatmap."""

    def test_overview(self):
        recorder = StudyStatsRecorder()
        review(recorder, make_card("a"), Rating.GOOD)
        review(recorder, make_card("b"), Rating.AGAIN)

        overview = recorder.overview(DueCounts(new_count=4, due_count=2, total_count=9))

        assert overview.retention == 50.0
        assert overview.streak_days == 1
        assert overview.due_count == 2
        assert overview.new_count == 4
        assert overview.total_count == 9

    def test_detailed(self):
        recorder = StudyStatsRecorder()
        review(recorder, make_card("a"), Rating.GOOD, deck_id="d1")
        review(recorder, make_card("b"), Rating.GOOD, deck_id="d2")
        review(recorder, make_card("c"), Rating.HARD, deck_id="d2", now=NOW + timedelta(days=1))
        decks = {"d2": make_deck("Genetics")}

        detailed = recorder.detailed(decks, DueCounts())

        assert detailed.review_days == 2
        assert detailed.average_reviews_per_day == 1.5
        assert detailed.reviews_by_day["2025-01-15"].total == 2
        assert detailed.reviews_by_day["2025-01-16"].correct == 0
        assert [row.deck_id for row in detailed.decks] == ["d2", "d1"]
        assert detailed.decks[0].deck_name == "Genetics"
        assert detailed.decks[0].retention == 50.0
        assert detailed.decks[1].deck_name == "Unnamed Deck"

    def test_heatmap(self):
        recorder = StudyStatsRecorder()
        for i in range(6):
            review(recorder, make_card(f"q{i}"), Rating.GOOD)
        review(recorder, make_card("old"), Rating.GOOD, now=NOW - timedelta(days=2))

        days = recorder.heatmap(days=7, now=NOW)

        assert len(days) == 7
        assert days[0].date == date(2025, 1, 9)
        assert days[-1].date == date(2025, 1, 15)
        assert (days[-1].count, days[-1].level) == (6, "heat-2")
        assert (days[-3].count, days[-3].level) == (1, "heat-1")
        assert days[-2].level == "heat-0"

    def test_stats_serialise_camel_case(self):
        recorder = StudyStatsRecorder()
        review(recorder, make_card("a"), Rating.GOOD)

        data = recorder.stats.model_dump(mode="json", by_alias=True)

        assert data["totalReviews"] == 1
        assert data["reviewHistory"][0]["deckId"] == "d1"
        assert data["lastStudyDate"] == "2025-01-15"
        assert StudyStats.model_validate(data) == recorder.stats
