"""
Tests for the spaced repetition scheduler.
"""

import random
from datetime import UTC, datetime, timedelta

import pytest
from freezegun import freeze_time

from onenote_flashcards.exceptions import InvalidRatingError
from onenote_flashcards.scheduler import (
    Rating,
    SchedulerConfig,
    calculate_next_review,
    is_card_due,
    is_correct,
    preview_intervals,
    rating_from_str,
)

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)


class TestRatingConversion:
    """Test wire rating strings."""

    @pytest.mark.parametrize("value", ["again", "hard", "good", "easy"])
    def test_known_ratings(self, value):
        assert rating_from_str(value) == Rating(value)

    def test_rating_passthrough(self):
        assert rating_from_str(Rating.EASY) is Rating.EASY

    @pytest.mark.parametrize("value", ["", "GOOD", "perfect", "ok"])
    def test_unknown_rating_fails_fast(self, value):
        with pytest.raises(InvalidRatingError):
            rating_from_str(value)

    def test_correct_ratings(self):
        assert is_correct(Rating.GOOD)
        assert is_correct(Rating.EASY)
        assert not is_correct(Rating.HARD)
        assert not is_correct(Rating.AGAIN)


class TestCalculateNextReview:
    """Test the scheduling rules for each rating."""

    def test_new_card_good(self):
        result = calculate_next_review(Rating.GOOD, 0, 2.5, 0, now=NOW)

        assert result.interval_days == 1
        assert result.ease == pytest.approx(2.5)
        assert result.review_count == 1
        assert result.due == NOW + timedelta(days=1)

    def test_new_card_again(self):
        result = calculate_next_review(Rating.AGAIN, 0, 2.5, 0, now=NOW)

        assert result.interval_days == 1
        assert result.ease == pytest.approx(2.3)
        assert result.review_count == 1

    def test_hard_shrinks_interval(self):
        result = calculate_next_review(Rating.HARD, 10, 2.0, 4, now=NOW)

        assert result.interval_days == 6
        assert result.ease == pytest.approx(1.7)
        assert result.review_count == 5

    def test_easy_grows_interval_and_ease(self):
        result = calculate_next_review(Rating.EASY, 10, 2.0, 4, now=NOW)

        assert result.interval_days == 26
        assert result.ease == pytest.approx(2.6)
        assert result.due == NOW + timedelta(days=26)

    def test_good_uses_ease(self):
        result = calculate_next_review(Rating.GOOD, 10, 2.0, 4, now=NOW)
        assert result.interval_days == 20
        assert result.ease == pytest.approx(2.0)

    def test_graduating_steps(self):
        assert calculate_next_review(Rating.GOOD, 1, 2.5, now=NOW).interval_days == 3
        assert calculate_next_review(Rating.EASY, 1, 2.5, now=NOW).interval_days == 7
        assert calculate_next_review(Rating.EASY, 0, 2.5, now=NOW).interval_days == 3
        assert calculate_next_review(Rating.HARD, 0, 2.5, now=NOW).interval_days == 1

    def test_hard_interval_at_least_two_days(self):
        assert calculate_next_review(Rating.HARD, 1, 2.5, now=NOW).interval_days == 2
        assert calculate_next_review(Rating.HARD, 3, 2.5, now=NOW).interval_days == 2

    def test_again_resets_interval(self):
        result = calculate_next_review(Rating.AGAIN, 200, 2.5, 12, now=NOW)
        assert result.interval_days == 1
        assert result.due == NOW + timedelta(days=1)

    def test_interval_capped_at_four_years(self):
        result = calculate_next_review(Rating.GOOD, 1000, 2.5, 10, now=NOW)
        assert result.interval_days == 1460

    def test_ease_floor_on_again(self):
        result = calculate_next_review(Rating.AGAIN, 5, 1.4, 3, now=NOW)
        assert result.ease == pytest.approx(1.3)

    def test_ease_floor_on_hard(self):
        result = calculate_next_review(Rating.HARD, 5, 1.3, 3, now=NOW)
        assert result.ease == pytest.approx(1.3)

    def test_string_rating_is_rejected(self):
        with pytest.raises(InvalidRatingError):
            calculate_next_review("good", 0, 2.5, 0, now=NOW)

    @freeze_time("2025-01-15 12:00:00")
    def test_defaults_to_current_time(self):
        result = calculate_next_review(Rating.GOOD)
        assert result.due == datetime(2025, 1, 16, 12, 0, 0, tzinfo=UTC)

    def test_missing_ease_uses_default(self):
        result = calculate_next_review(Rating.GOOD, 10, 0, 1, now=NOW)
        assert result.interval_days == 25

    def test_custom_config(self):
        config = SchedulerConfig(maximum_interval_days=30)
        result = calculate_next_review(Rating.EASY, 20, 2.5, 5, now=NOW, config=config)
        assert result.interval_days == 30


class TestSchedulingProperties:
    """Invariants over arbitrary rating sequences."""

    @pytest.mark.parametrize("seed", range(20))
    def test_bounds_hold_for_any_sequence(self, seed):
        rng = random.Random(seed)
        interval, ease, count = 0, 2.5, 0

        for _ in range(40):
            rating = rng.choice(list(Rating))
            result = calculate_next_review(rating, interval, ease, count, now=NOW)

            assert result.ease >= 1.3
            assert 1 <= result.interval_days <= 1460
            assert result.review_count == count + 1

            interval, ease, count = result.interval_days, result.ease, result.review_count


class TestPreviewIntervals:
    """Test answer button interval previews."""

    def test_new_card_preview(self):
        assert preview_intervals(0, 2.5) == {"again": 1, "hard": 1, "good": 1, "easy": 3}

    def test_review_card_preview(self):
        assert preview_intervals(10, 2.0) == {"again": 1, "hard": 6, "good": 20, "easy": 26}

    def test_preview_matches_scheduler(self):
        preview = preview_intervals(7, 2.2)
        for rating in Rating:
            result = calculate_next_review(rating, 7, 2.2, 3, now=NOW)
            assert preview[rating.value] == result.interval_days


class TestIsCardDue:
    """Test due checks."""

    def test_new_card_is_not_due(self):
        assert is_card_due(None, NOW) is False

    def test_past_due(self):
        assert is_card_due(NOW - timedelta(minutes=1), NOW) is True

    def test_due_exactly_now(self):
        assert is_card_due(NOW, NOW) is True

    def test_future(self):
        assert is_card_due(NOW + timedelta(seconds=1), NOW) is False

    def test_naive_due_treated_as_utc(self):
        assert is_card_due(datetime(2025, 1, 15, 11, 0, 0), NOW) is True

    @freeze_time("2025-01-15 12:00:00")
    def test_defaults_to_current_time(self):
        assert is_card_due(datetime(2025, 1, 15, 11, 59, tzinfo=UTC)) is True
