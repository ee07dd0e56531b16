"""
Study session manager: queue construction, the review loop and the session
lifecycle (NotStarted -> Active -> Completed | Exited, Exited -> Active on resume).
"""

import logging
import math
import random
from datetime import UTC, datetime

from onenote_flashcards.card_store import CardStore
from onenote_flashcards.database import StateDAO
from onenote_flashcards.due_cards import CardStatus, collect_cards
from onenote_flashcards.exceptions import NoActiveSessionError, NothingToStudyError
from onenote_flashcards.scheduler import (
    SchedulerConfig,
    calculate_next_review,
    preview_intervals,
    rating_from_str,
)
from onenote_flashcards.schemas import (
    CurrentCard,
    PresentResult,
    QueueEntry,
    SessionStatus,
    SessionSummary,
    StudySession,
    StudySessionStart,
    StudyStats,
    UserSettings,
)
from onenote_flashcards.statistics import StudyStatsRecorder

logger = logging.getLogger(__name__)

SESSION_KEY = "session"
STATS_KEY = "stats"


class StudySessionManager:
    """Runs bounded review sessions over a card store."""

    def __init__(
        self,
        user_id: str,
        store: CardStore,
        state_dao: StateDAO,
        settings: UserSettings | None = None,
        rng: random.Random | None = None,
        scheduler_config: SchedulerConfig | None = None,
    ):
        self.user_id = user_id
        self.store = store
        self.state_dao = state_dao
        self.settings = settings or UserSettings()
        self.rng = rng or random.Random()
        self.scheduler_config = scheduler_config or SchedulerConfig()

        self.session = StudySession()
        self.recorder = StudyStatsRecorder()
        self.answer_shown = False

    @property
    def stats(self) -> StudyStats:
        return self.recorder.stats

    # Persistence
    def load(self) -> None:
        """Load the persisted session and statistics, discarding unreadable ones."""
        try:
            data = self.state_dao.load(self.user_id, SESSION_KEY)
            self.session = StudySession.model_validate(data) if data else StudySession()
        except ValueError as e:
            logger.warning("Discarding corrupt study session for user %s: %s", self.user_id, e)
            self.state_dao.delete(self.user_id, SESSION_KEY)
            self.session = StudySession()

        try:
            data = self.state_dao.load(self.user_id, STATS_KEY)
            self.recorder = StudyStatsRecorder(StudyStats.model_validate(data) if data else None)
        except ValueError as e:
            logger.warning("Discarding corrupt statistics for user %s: %s", self.user_id, e)
            self.state_dao.delete(self.user_id, STATS_KEY)
            self.recorder = StudyStatsRecorder()

        self.answer_shown = False

    def save_session(self) -> None:
        self.state_dao.save(
            self.user_id, SESSION_KEY, self.session.model_dump(mode="json", by_alias=True)
        )

    def save_stats(self) -> None:
        self.state_dao.save(
            self.user_id, STATS_KEY, self.stats.model_dump(mode="json", by_alias=True)
        )

    # Queue construction
    def build_queue(
        self, options: StudySessionStart, now: datetime | None = None
    ) -> list[QueueEntry]:
        """
        Build a session queue: due reviews first, then new cards.

        Due cards are ordered by due date (earliest first) unless the review
        order is random. New cards keep store order unless the new card order
        is random. Each part is truncated to the daily limits and the overall
        limit.
        """
        if now is None:
            now = datetime.now(UTC)
        settings = self.settings
        limit = options.limit
        if limit is None:
            limit = settings.reviews_per_day + settings.new_cards_per_day

        queue: list[QueueEntry] = []

        if options.include_due:
            due = list(collect_cards(self.store.decks, CardStatus.DUE, now, options.tags))
            if settings.card_order_review == "random":
                self.rng.shuffle(due)
            else:
                due.sort(key=lambda item: item.card.due)
            for item in due[: min(settings.reviews_per_day, limit)]:
                queue.append(
                    QueueEntry(
                        deck_id=item.deck_id,
                        card_index=item.card_index,
                        card_id=item.card.id,
                        type="review",
                    )
                )

        if options.include_new:
            new = list(collect_cards(self.store.decks, CardStatus.NEW, now, options.tags))
            if settings.card_order_new == "random":
                self.rng.shuffle(new)
            take = max(0, min(settings.new_cards_per_day, limit - len(queue)))
            for item in new[:take]:
                queue.append(
                    QueueEntry(
                        deck_id=item.deck_id,
                        card_index=item.card_index,
                        card_id=item.card.id,
                        type="new",
                    )
                )

        return queue

    # Lifecycle
    def start(self, options: StudySessionStart, now: datetime | None = None) -> StudySession:
        """
        Start a new session.

        Raises:
            NothingToStudyError: If no card matches the options
        """
        if now is None:
            now = datetime.now(UTC)
        queue = self.build_queue(options, now)
        if not queue:
            raise NothingToStudyError("No cards to study with the selected options")

        self.session = StudySession(active=True, queue=queue, current_index=0, start_time=now)
        self.answer_shown = False
        self.save_session()
        logger.info("Started study session for user %s with %d cards", self.user_id, len(queue))
        return self.session

    @property
    def resumable(self) -> bool:
        return bool(self.session.queue) and self.session.current_index < len(self.session.queue)

    def exit(self) -> StudySession:
        """Deactivate the session, keeping its queue for a later resume."""
        self._require_active()
        self.session.active = False
        self.answer_shown = False
        self.save_session()
        logger.info(
            "Exited study session for user %s at %d/%d",
            self.user_id,
            self.session.current_index,
            len(self.session.queue),
        )
        return self.session

    def resume(self) -> StudySession:
        """Reactivate an exited or interrupted session."""
        if not self.resumable:
            raise NoActiveSessionError("No study session to resume")
        if not self.session.active:
            self.session.active = True
            self.save_session()
        self.answer_shown = False
        return self.session

    def discard(self) -> None:
        """Clear the session entirely, in memory and in storage."""
        self.session = StudySession()
        self.answer_shown = False
        self.state_dao.delete(self.user_id, SESSION_KEY)

    def status(self) -> SessionStatus:
        queue = self.session.queue
        return SessionStatus(
            active=self.session.active,
            resumable=self.resumable,
            current_index=self.session.current_index,
            total=len(queue),
            remaining=len(queue) - self.session.current_index,
            new_count=sum(1 for entry in queue if entry.type == "new"),
            review_count=sum(1 for entry in queue if entry.type == "review"),
            answer_shown=self.answer_shown,
        )

    # Review loop
    def _require_active(self) -> None:
        if not self.session.active:
            raise NoActiveSessionError("No active study session")

    def present_current(self, now: datetime | None = None) -> PresentResult:
        """
        Present the current card, skipping entries whose card no longer exists.

        Completes the session when the cursor reaches the end of the queue.
        """
        self._require_active()
        session = self.session

        while session.current_index < len(session.queue):
            entry = session.queue[session.current_index]
            resolved = self.store.resolve(entry)
            if resolved is not None:
                card_index, card = resolved
                deck = self.store.decks[entry.deck_id]
                return PresentResult(
                    complete=False,
                    card=CurrentCard(
                        deck_id=entry.deck_id,
                        page_title=deck.page_title,
                        card_index=card_index,
                        card=card,
                        type=entry.type,
                        position=session.current_index + 1,
                        total=len(session.queue),
                        answer_shown=self.answer_shown,
                        intervals=preview_intervals(
                            card.interval, card.ease, self.scheduler_config
                        ),
                    ),
                )

            logger.warning(
                "Skipping stale queue entry %s/%s for user %s",
                entry.deck_id,
                entry.card_id or entry.card_index,
                self.user_id,
            )
            session.current_index += 1
            self.answer_shown = False
            self.save_session()

        return PresentResult(complete=True, summary=self._complete(now))

    def reveal_answer(self) -> CurrentCard:
        """Flip the current card to show its answer."""
        result = self.present_current()
        if result.complete:
            raise NoActiveSessionError("Study session is already complete")
        self.answer_shown = True
        result.card.answer_shown = True
        return result.card

    def apply_rating(self, rating: str, now: datetime | None = None) -> PresentResult:
        """
        Rate the current card and move to the next one.

        The card store and statistics are committed locally before the session
        cursor advances, and the remote push happens last.

        Raises:
            InvalidRatingError: For an unknown rating
            NoActiveSessionError: If no session is active or no card is left
        """
        rating = rating_from_str(rating)
        if now is None:
            now = datetime.now(UTC)

        current = self.present_current(now)
        if current.complete:
            raise NoActiveSessionError("Study session is already complete")

        entry = self.session.queue[self.session.current_index]
        card_index, card = self.store.resolve(entry)
        previous = card.model_copy()

        result = calculate_next_review(
            rating,
            current_interval_days=card.interval,
            current_ease=card.ease,
            current_review_count=card.review_count,
            now=now,
            config=self.scheduler_config,
        )
        card.interval = result.interval_days
        card.ease = result.ease
        card.due = result.due
        card.review_count = result.review_count

        self.recorder.record_review(
            entry.deck_id, previous, rating, result, card_index=card_index, now=now
        )
        self.store.save()
        self.save_stats()

        self.session.current_index += 1
        self.answer_shown = False
        self.save_session()

        self.store.push(now)
        return self.present_current(now)

    def _complete(self, now: datetime | None = None) -> SessionSummary:
        if now is None:
            now = datetime.now(UTC)
        session = self.session

        minutes = 0
        if session.start_time is not None:
            elapsed = (now - session.start_time).total_seconds() / 60
            minutes = max(0, math.floor(elapsed + 0.5))

        summary = SessionSummary(
            reviewed=len(session.queue),
            new=sum(1 for entry in session.queue if entry.type == "new"),
            review=sum(1 for entry in session.queue if entry.type == "review"),
            minutes=minutes,
        )

        self.recorder.add_study_time(minutes)
        self.save_stats()
        self.discard()
        logger.info(
            "Completed study session for user %s: %d cards in %d minutes",
            self.user_id,
            summary.reviewed,
            summary.minutes,
        )
        return summary
