"""
Cumulative study statistics: review counters, streaks, study time,
retention and the review activity heatmap.
"""

from collections import Counter
from collections.abc import Mapping
from datetime import UTC, date, datetime, timedelta

from onenote_flashcards.scheduler import Rating, SchedulingResult, is_correct
from onenote_flashcards.schemas import (
    MAX_REVIEW_HISTORY,
    Card,
    DayReviews,
    Deck,
    DeckStatsRow,
    DeckStudyStats,
    DetailedStats,
    DueCounts,
    HeatmapDay,
    ReviewHistoryEntry,
    StatsOverview,
    StudyStats,
)

# Upper bounds (exclusive) of the heatmap intensity levels
HEAT_THRESHOLDS = (1, 5, 10, 20)


def retention(correct: int, total: int) -> float:
    """Percentage of correct reviews, rounded to one decimal."""
    if total <= 0:
        return 0.0
    return round(correct / total * 100, 1)


def heat_level(count: int) -> str:
    """CSS intensity class for a day's review count."""
    for level, bound in enumerate(HEAT_THRESHOLDS):
        if count < bound:
            return f"heat-{level}"
    return f"heat-{len(HEAT_THRESHOLDS)}"


class StudyStatsRecorder:
    """Applies reviews to a StudyStats record and derives reports from it."""

    def __init__(self, stats: StudyStats | None = None):
        self.stats = stats or StudyStats()

    def record_review(
        self,
        deck_id: str,
        card: Card,
        rating: Rating,
        result: SchedulingResult,
        card_index: int | None = None,
        now: datetime | None = None,
    ) -> ReviewHistoryEntry:
        """
        Record one applied rating.

        Args:
            deck_id: Deck of the rated card
            card: The card as it was before the rating
            rating: The rating given
            result: The scheduler output for this rating
            card_index: Position of the card in its deck
            now: Review instant

        Returns:
            The appended history entry
        """
        if now is None:
            now = datetime.now(UTC)

        stats = self.stats
        deck_stats = stats.deck_stats.setdefault(deck_id, DeckStudyStats())
        correct = is_correct(rating)

        if card.review_count == 0:
            stats.cards_studied += 1
            deck_stats.cards_studied += 1

        stats.total_reviews += 1
        deck_stats.total_reviews += 1
        if correct:
            stats.correct_reviews += 1
            deck_stats.correct_reviews += 1

        entry = ReviewHistoryEntry(
            date=now,
            deck_id=deck_id,
            card_id=card.id,
            card_index=card_index,
            rating=rating.value,
            previous_interval=card.interval,
            new_interval=result.interval_days,
            ease=result.ease,
        )
        stats.review_history.append(entry)
        # Oldest entries are evicted first
        if len(stats.review_history) > MAX_REVIEW_HISTORY:
            del stats.review_history[: len(stats.review_history) - MAX_REVIEW_HISTORY]

        self.update_streak(now.date())
        return entry

    def update_streak(self, today: date) -> int:
        """Extend, keep or reset the daily streak for a review made today."""
        stats = self.stats
        if stats.last_study_date == today:
            return stats.streak_days
        if stats.last_study_date == today - timedelta(days=1):
            stats.streak_days += 1
        else:
            stats.streak_days = 1
        stats.last_study_date = today
        return stats.streak_days

    def add_study_time(self, minutes: int) -> None:
        if minutes > 0:
            self.stats.study_time_minutes += minutes

    def overview(self, counts: DueCounts) -> StatsOverview:
        stats = self.stats
        return StatsOverview(
            cards_studied=stats.cards_studied,
            total_reviews=stats.total_reviews,
            correct_reviews=stats.correct_reviews,
            retention=retention(stats.correct_reviews, stats.total_reviews),
            streak_days=stats.streak_days,
            study_time_minutes=stats.study_time_minutes,
            last_study_date=stats.last_study_date,
            due_count=counts.due_count,
            new_count=counts.new_count,
            total_count=counts.total_count,
        )

    def reviews_by_day(self) -> dict[str, DayReviews]:
        """Review totals keyed by ISO date, oldest day first."""
        days: dict[str, DayReviews] = {}
        for entry in sorted(self.stats.review_history, key=lambda e: e.date):
            day = days.setdefault(entry.date.date().isoformat(), DayReviews())
            day.total += 1
            if entry.rating in (Rating.GOOD.value, Rating.EASY.value):
                day.correct += 1
        return days

    def detailed(self, decks: Mapping[str, Deck], counts: DueCounts) -> DetailedStats:
        """
        Build the detailed statistics report.

        Args:
            decks: The card store, used for deck names
            counts: Current due counts over the whole store
        """
        by_day = self.reviews_by_day()
        review_days = len(by_day)
        history_size = len(self.stats.review_history)
        average = round(history_size / review_days, 1) if review_days else 0.0

        rows = []
        for deck_id, deck_stats in self.stats.deck_stats.items():
            deck = decks.get(deck_id)
            rows.append(
                DeckStatsRow(
                    deck_id=deck_id,
                    deck_name=deck.page_title if deck and deck.page_title else "Unnamed Deck",
                    cards_studied=deck_stats.cards_studied,
                    total_reviews=deck_stats.total_reviews,
                    retention=retention(deck_stats.correct_reviews, deck_stats.total_reviews),
                )
            )
        rows.sort(key=lambda row: row.total_reviews, reverse=True)

        return DetailedStats(
            overview=self.overview(counts),
            review_days=review_days,
            average_reviews_per_day=average,
            reviews_by_day=by_day,
            decks=rows,
        )

    def heatmap(self, days: int = 30, now: datetime | None = None) -> list[HeatmapDay]:
        """Review counts for the last ``days`` days, today included, oldest first."""
        if now is None:
            now = datetime.now(UTC)
        today = now.date()
        counts = Counter(entry.date.date() for entry in self.stats.review_history)

        result = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            count = counts.get(day, 0)
            result.append(HeatmapDay(date=day, count=count, level=heat_level(count)))
        return result
