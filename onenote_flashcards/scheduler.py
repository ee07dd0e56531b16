"""
Anki-style spaced repetition scheduler.

Pure functions mapping a card's scheduling state and a review rating to its
next scheduling state:
- again: lapse, interval back to one day and ease penalised
- hard: shorter interval (60% of the previous one, at least two days)
- good: 1 -> 3 days, then interval * ease
- easy: 3 / 7 days, then interval * ease * 1.3, ease grows
- Ease never drops below 1.3 and intervals stay within 1..1460 days
"""

import math
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import NamedTuple

from onenote_flashcards.exceptions import InvalidRatingError


class Rating(str, Enum):
    """Review ratings, ordered from worst to best recall."""

    AGAIN = "again"  # Lapse
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class SchedulerConfig(NamedTuple):
    """Constants for the scheduling algorithm."""

    default_ease: float = 2.5  # Ease for never-reviewed cards
    minimum_ease: float = 1.3  # Ease floor
    lapse_ease_penalty: float = 0.2  # Subtracted on "again"
    ease_modifier_hard: float = 0.85
    ease_modifier_good: float = 1.0
    ease_modifier_easy: float = 1.3
    hard_interval_factor: float = 0.6  # 60% of previous interval
    interval_modifier: float = 1.0
    minimum_interval_days: int = 1
    maximum_interval_days: int = 365 * 4


class SchedulingResult(NamedTuple):
    """Result of a scheduling calculation."""

    interval_days: int
    ease: float
    due: datetime
    review_count: int


CORRECT_RATINGS = frozenset({Rating.GOOD, Rating.EASY})


def rating_from_str(value: str | Rating) -> Rating:
    """
    Convert a wire rating string to a Rating.

    Raises:
        InvalidRatingError: If the value is not one of again/hard/good/easy
    """
    if isinstance(value, Rating):
        return value
    try:
        return Rating(value)
    except ValueError as e:
        raise InvalidRatingError(f"Unknown rating: {value!r}") from e


def is_correct(rating: Rating) -> bool:
    """Whether a rating counts as a correct review for statistics."""
    return rating in CORRECT_RATINGS


def _next_interval(rating: Rating, interval: int, ease: float, config: SchedulerConfig) -> int:
    if rating == Rating.AGAIN:
        return 1

    if rating == Rating.HARD:
        if interval == 0:
            return 1
        return max(2, math.ceil(interval * config.hard_interval_factor))

    if rating == Rating.GOOD:
        if interval == 0:
            return 1
        if interval == 1:
            return 3
        return math.ceil(interval * ease * config.interval_modifier)

    if rating == Rating.EASY:
        if interval == 0:
            return 3
        if interval == 1:
            return 7
        return math.ceil(interval * ease * config.ease_modifier_easy * config.interval_modifier)

    raise InvalidRatingError(f"Unknown rating: {rating!r}")


def _next_ease(rating: Rating, ease: float, config: SchedulerConfig) -> float:
    if rating == Rating.AGAIN:
        new_ease = ease - config.lapse_ease_penalty
    elif rating == Rating.HARD:
        new_ease = ease * config.ease_modifier_hard
    elif rating == Rating.GOOD:
        new_ease = ease * config.ease_modifier_good
    else:
        new_ease = ease * config.ease_modifier_easy
    return max(config.minimum_ease, new_ease)


def calculate_next_review(
    rating: Rating,
    current_interval_days: int = 0,
    current_ease: float = 2.5,
    current_review_count: int = 0,
    now: datetime | None = None,
    config: SchedulerConfig | None = None,
) -> SchedulingResult:
    """
    Calculate the next scheduling state of a card.

    Args:
        rating: The rating given for this review
        current_interval_days: Current interval (0 for a never-reviewed card)
        current_ease: Current ease multiplier
        current_review_count: Number of ratings applied so far
        now: Review instant, defaults to the current UTC time
        config: Scheduler configuration

    Returns:
        SchedulingResult with the updated fields

    Raises:
        InvalidRatingError: If the rating is not a known Rating
    """
    if not isinstance(rating, Rating):
        raise InvalidRatingError(f"Unknown rating: {rating!r}")
    if config is None:
        config = SchedulerConfig()
    if now is None:
        now = datetime.now(UTC)

    interval = max(0, current_interval_days or 0)
    ease = current_ease or config.default_ease

    interval_days = _next_interval(rating, interval, ease, config)
    interval_days = min(
        config.maximum_interval_days, max(config.minimum_interval_days, interval_days)
    )

    return SchedulingResult(
        interval_days=interval_days,
        ease=_next_ease(rating, ease, config),
        due=now + timedelta(days=interval_days),
        review_count=(current_review_count or 0) + 1,
    )


def preview_intervals(
    current_interval_days: int = 0,
    current_ease: float = 2.5,
    config: SchedulerConfig | None = None,
) -> dict[str, int]:
    """Interval in days each rating would produce, for answer button labels."""
    if config is None:
        config = SchedulerConfig()
    interval = max(0, current_interval_days or 0)
    ease = current_ease or config.default_ease
    return {
        rating.value: min(
            config.maximum_interval_days,
            max(config.minimum_interval_days, _next_interval(rating, interval, ease, config)),
        )
        for rating in Rating
    }


def is_card_due(due: datetime | None, now: datetime | None = None) -> bool:
    """
    Check whether a scheduled card is due for review.

    Args:
        due: The scheduled review instant, or None for a new card

    Returns:
        True if the card has a due date at or before now
    """
    if due is None:
        return False
    if now is None:
        now = datetime.now(UTC)
    if due.tzinfo is None:
        due = due.replace(tzinfo=UTC)
    return due <= now
