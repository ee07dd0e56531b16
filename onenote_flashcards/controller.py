"""
Per-user application state: one card store, one session manager and the
user's study settings, behind the operations the API exposes.
"""

import logging
import random
from datetime import UTC, datetime

from onenote_flashcards.card_store import CardStore
from onenote_flashcards.database import PendingSaveDAO, StateDAO
from onenote_flashcards.deck_source import DeckSource
from onenote_flashcards.due_cards import count_cards, get_due_counts
from onenote_flashcards.exceptions import RemoteUnavailableError, SessionInProgressError
from onenote_flashcards.schemas import (
    BatchEditRequest,
    BatchEditResult,
    Card,
    CardCreate,
    CardUpdate,
    CurrentCard,
    DetailedStats,
    DueCountsResponse,
    FlushResult,
    HeatmapDay,
    MergeResult,
    PresentResult,
    SessionStatus,
    StatsOverview,
    StudySession,
    StudySessionStart,
    UserSettings,
    UserSettingsUpdate,
)
from onenote_flashcards.study_session import StudySessionManager

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


class StudyController:
    """Owns one user's study state. All mutations go through this object."""

    def __init__(
        self,
        user_id: str,
        state_dao: StateDAO,
        pending_dao: PendingSaveDAO,
        source: DeckSource,
        default_settings: UserSettings | None = None,
        rng: random.Random | None = None,
    ):
        self.user_id = user_id
        self.state_dao = state_dao
        self.default_settings = default_settings or UserSettings()
        self.store = CardStore(user_id, state_dao, pending_dao, source)
        self.sessions = StudySessionManager(user_id, self.store, state_dao, rng=rng)
        self.load()

    def load(self) -> None:
        self.settings = self._load_settings()
        self.sessions.settings = self.settings
        self.store.load()
        self.sessions.load()

    def _load_settings(self) -> UserSettings:
        try:
            data = self.state_dao.load(self.user_id, SETTINGS_KEY)
            if data:
                return UserSettings.model_validate(data)
        except ValueError as e:
            logger.warning("Discarding corrupt settings for user %s: %s", self.user_id, e)
            self.state_dao.delete(self.user_id, SETTINGS_KEY)
        return self.default_settings.model_copy()

    # Read accessors
    def get_due_counts(self, now: datetime | None = None) -> DueCountsResponse:
        return get_due_counts(self.store.decks, now)

    def get_session_status(self) -> SessionStatus:
        return self.sessions.status()

    def get_current_card(self, now: datetime | None = None) -> PresentResult:
        return self.sessions.present_current(now)

    def get_tags(self) -> list[str]:
        return self.store.all_tags()

    # Session mutators
    def start_study_session(
        self, options: StudySessionStart, now: datetime | None = None
    ) -> StudySession:
        return self.sessions.start(options, now)

    def reveal_answer(self) -> CurrentCard:
        return self.sessions.reveal_answer()

    def apply_rating(self, rating: str, now: datetime | None = None) -> PresentResult:
        return self.sessions.apply_rating(rating, now)

    def exit_session(self) -> StudySession:
        return self.sessions.exit()

    def resume_session(self) -> StudySession:
        return self.sessions.resume()

    def discard_session(self) -> None:
        self.sessions.discard()

    # Card store mutators
    def sync(self, now: datetime | None = None) -> MergeResult:
        """
        Fetch decks from the source and merge them into the card store.

        Raises:
            SessionInProgressError: While a study session is active
            RemoteUnavailableError: If the source cannot be reached, or queued
                saves could not be delivered first
        """
        if self.sessions.session.active:
            raise SessionInProgressError("Finish or exit the study session before syncing")

        flushed = self.store.flush_pending()
        if flushed.remaining:
            # The remote copy predates the queued saves
            raise RemoteUnavailableError(
                f"{flushed.remaining} pending saves could not be delivered; sync postponed"
            )

        incoming = self.store.source.fetch_decks()
        result = self.store.merge(incoming)
        self.store.commit(now)
        return result

    def create_card(self, deck_id: str, data: CardCreate, now: datetime | None = None) -> Card:
        card = self.store.add_card(deck_id, data, now)
        self.store.commit(now)
        return card

    def edit_card(self, deck_id: str, card_id: str, data: CardUpdate) -> Card:
        card = self.store.edit_card(deck_id, card_id, data)
        self.store.commit()
        return card

    def batch_edit(self, request: BatchEditRequest) -> BatchEditResult:
        result = self.store.batch_edit(request)
        self.store.commit()
        return result

    def flush_pending_saves(self) -> FlushResult:
        return self.store.flush_pending()

    # Settings
    def get_settings(self) -> UserSettings:
        return self.settings

    def update_settings(self, update: UserSettingsUpdate) -> UserSettings:
        changes = update.model_dump(exclude_none=True)
        self.settings = self.settings.model_copy(update=changes)
        self.sessions.settings = self.settings
        self.state_dao.save(
            self.user_id, SETTINGS_KEY, self.settings.model_dump(mode="json", by_alias=True)
        )
        return self.settings

    # Statistics
    def get_stats(self, now: datetime | None = None) -> StatsOverview:
        counts = count_cards((card for _, _, card in self.store.iter_cards()), now)
        return self.sessions.recorder.overview(counts)

    def get_detailed_stats(self, now: datetime | None = None) -> DetailedStats:
        counts = count_cards((card for _, _, card in self.store.iter_cards()), now)
        return self.sessions.recorder.detailed(self.store.decks, counts)

    def get_heatmap(self, days: int = 30, now: datetime | None = None) -> list[HeatmapDay]:
        return self.sessions.recorder.heatmap(days, now or datetime.now(UTC))
