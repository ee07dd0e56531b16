"""
Pydantic schemas for persisted study state and API request/response validation.

Wire and persisted JSON use camelCase keys (``pageTitle``, ``reviewCount``);
Python code uses the snake_case attribute names.
"""

import uuid
from datetime import UTC, date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_EASE = 2.5
MAX_REVIEW_HISTORY = 1000


def new_card_id() -> str:
    """Generate a stable card identifier."""
    return uuid.uuid4().hex


def _as_utc(value):
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def clean_tags(tags) -> list[str]:
    cleaned = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


class CamelModel(BaseModel):
    """Base schema serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Card store schemas
class Card(CamelModel):
    """A flashcard with its scheduling state."""

    id: str = Field(default_factory=new_card_id)
    question: str
    answer: str = ""
    tags: list[str] = Field(default_factory=list)
    interval: int = Field(0, ge=0, description="Days until next review, 0 if never reviewed")
    ease: float = Field(DEFAULT_EASE, gt=0)
    due: datetime | None = None
    review_count: int = Field(0, ge=0)
    suspended: bool = False
    created: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _default_id(cls, value):
        return value or new_card_id()

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value):
        return clean_tags(value)

    @field_validator("interval", "review_count", mode="before")
    @classmethod
    def _default_zero(cls, value):
        return value or 0

    @field_validator("ease", mode="before")
    @classmethod
    def _default_ease(cls, value):
        return value or DEFAULT_EASE

    @field_validator("suspended", mode="before")
    @classmethod
    def _default_suspended(cls, value):
        return bool(value)

    @field_validator("due", "created", mode="after")
    @classmethod
    def _utc(cls, value):
        return _as_utc(value)

    @property
    def is_new(self) -> bool:
        """Cards without a due date are new, whatever their counters say."""
        return self.due is None


class Deck(CamelModel):
    """Cards generated from one source page."""

    page_title: str = ""
    last_updated: datetime | None = None
    cards: list[Card] = Field(default_factory=list)

    @field_validator("cards", mode="before")
    @classmethod
    def _drop_empty_cards(cls, value):
        return [card for card in value or [] if card]

    @field_validator("last_updated", mode="after")
    @classmethod
    def _utc(cls, value):
        return _as_utc(value)


class IncomingCard(CamelModel):
    """A card as delivered by a deck source; absent fields are None."""

    id: str | None = None
    question: str
    answer: str = ""
    tags: list[str] | None = None
    interval: int | None = Field(None, ge=0)
    ease: float | None = Field(None, gt=0)
    due: datetime | None = None
    review_count: int | None = Field(None, ge=0)
    suspended: bool | None = None
    created: datetime | None = None

    @field_validator("due", "created", mode="after")
    @classmethod
    def _utc(cls, value):
        return _as_utc(value)


class IncomingDeck(CamelModel):
    """A deck as delivered by a deck source."""

    page_title: str = ""
    last_updated: datetime | None = None
    cards: list[IncomingCard] = Field(default_factory=list)

    @field_validator("cards", mode="before")
    @classmethod
    def _drop_empty_cards(cls, value):
        return [card for card in value or [] if card]

    @field_validator("last_updated", mode="after")
    @classmethod
    def _utc(cls, value):
        return _as_utc(value)


class MergeResult(CamelModel):
    """Summary of a merge of incoming decks into the card store."""

    decks_added: int = 0
    decks_updated: int = 0
    cards_added: int = 0
    cards_matched: int = 0


# Study session schemas
class QueueEntry(CamelModel):
    """A reference from the session queue into the card store."""

    deck_id: str
    card_index: int = Field(..., ge=0)
    card_id: str | None = None
    type: Literal["new", "review"]


class StudySession(CamelModel):
    """Persisted, resumable study session."""

    active: bool = False
    queue: list[QueueEntry] = Field(default_factory=list)
    current_index: int = Field(0, ge=0)
    start_time: datetime | None = None

    @field_validator("start_time", mode="after")
    @classmethod
    def _utc(cls, value):
        return _as_utc(value)

    @model_validator(mode="after")
    def _index_within_queue(self):
        if self.current_index > len(self.queue):
            raise ValueError("current_index is past the end of the queue")
        return self


class StudySessionStart(CamelModel):
    """Options for starting a study session."""

    include_due: bool = True
    include_new: bool = True
    limit: int | None = Field(None, ge=1, description="Max number of cards to study")
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value):
        return clean_tags(value)


class SessionStatus(CamelModel):
    """Status of the current study session."""

    active: bool
    resumable: bool
    current_index: int
    total: int
    remaining: int
    new_count: int
    review_count: int
    answer_shown: bool


class CurrentCard(CamelModel):
    """The card currently presented in a study session."""

    deck_id: str
    page_title: str
    card_index: int
    card: Card
    type: Literal["new", "review"]
    position: int
    total: int
    answer_shown: bool
    intervals: dict[str, int]


class SessionSummary(CamelModel):
    """Summary reported when a study session completes."""

    reviewed: int
    new: int
    review: int
    minutes: int


class PresentResult(CamelModel):
    """Either the current card or the completion summary."""

    complete: bool
    card: CurrentCard | None = None
    summary: SessionSummary | None = None


class RatingRequest(CamelModel):
    """Request to rate the current card."""

    rating: str = Field(..., description="again, hard, good or easy")


# Statistics schemas
class ReviewHistoryEntry(CamelModel):
    """One applied rating."""

    date: datetime
    deck_id: str
    card_id: str
    card_index: int | None = None
    rating: str
    previous_interval: int
    new_interval: int
    ease: float

    @field_validator("date", mode="after")
    @classmethod
    def _utc(cls, value):
        return _as_utc(value)


class DeckStudyStats(CamelModel):
    """Per-deck review counters."""

    cards_studied: int = 0
    total_reviews: int = 0
    correct_reviews: int = 0


class StudyStats(CamelModel):
    """Cumulative study statistics for a user."""

    cards_studied: int = 0
    total_reviews: int = 0
    correct_reviews: int = 0
    study_time_minutes: int = 0
    streak_days: int = 0
    last_study_date: date | None = None
    review_history: list[ReviewHistoryEntry] = Field(default_factory=list)
    deck_stats: dict[str, DeckStudyStats] = Field(default_factory=dict)

    @field_validator("review_history", mode="after")
    @classmethod
    def _cap_history(cls, value):
        return value[-MAX_REVIEW_HISTORY:]


class StatsOverview(CamelModel):
    """Headline statistics."""

    cards_studied: int
    total_reviews: int
    correct_reviews: int
    retention: float
    streak_days: int
    study_time_minutes: int
    last_study_date: date | None = None
    due_count: int
    new_count: int
    total_count: int


class DayReviews(CamelModel):
    """Reviews recorded on one day."""

    total: int = 0
    correct: int = 0


class DeckStatsRow(CamelModel):
    """Per-deck statistics row."""

    deck_id: str
    deck_name: str
    cards_studied: int
    total_reviews: int
    retention: float


class DetailedStats(CamelModel):
    """Detailed study statistics."""

    overview: StatsOverview
    review_days: int
    average_reviews_per_day: float
    reviews_by_day: dict[str, DayReviews]
    decks: list[DeckStatsRow]


class HeatmapDay(CamelModel):
    """Review count for one day of the activity heatmap."""

    date: date
    count: int
    level: str


# Due counts
class DueCounts(CamelModel):
    """Classification counts over a set of cards."""

    new_count: int = 0
    due_count: int = 0
    in_progress_count: int = 0
    suspended_count: int = 0
    total_count: int = 0


class DueCountsResponse(CamelModel):
    """Global and per-deck due counts."""

    overall: DueCounts
    decks: dict[str, DueCounts]


# Settings
class UserSettings(CamelModel):
    """Per-user study preferences."""

    new_cards_per_day: int = Field(20, ge=0)
    reviews_per_day: int = Field(100, ge=0)
    card_order_new: Literal["due", "random", "added"] = "due"
    card_order_review: Literal["due", "random"] = "due"
    use_spaced_repetition: bool = True
    show_images: bool = True
    autoplay_audio: bool = False
    night_mode: bool = False


class UserSettingsUpdate(CamelModel):
    """Partial update of study preferences."""

    new_cards_per_day: int | None = Field(None, ge=0)
    reviews_per_day: int | None = Field(None, ge=0)
    card_order_new: Literal["due", "random", "added"] | None = None
    card_order_review: Literal["due", "random"] | None = None
    use_spaced_repetition: bool | None = None
    show_images: bool | None = None
    autoplay_audio: bool | None = None
    night_mode: bool | None = None


# Card editing schemas
class CardCreate(CamelModel):
    """Schema for manually creating a card."""

    question: str = Field(..., min_length=1, description="The question text")
    answer: str = Field(..., min_length=1, description="The answer text")
    tags: list[str] = Field(default_factory=list)

    @field_validator("question", "answer", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value):
        return clean_tags(value)


class CardUpdate(CamelModel):
    """Schema for editing a card's content."""

    question: str | None = Field(None, min_length=1)
    answer: str | None = Field(None, min_length=1)
    tags: list[str] | None = None
    suspended: bool | None = None

    @field_validator("question", "answer", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value):
        return None if value is None else clean_tags(value)


class BatchEditRequest(CamelModel):
    """Tag and suspend edits applied to every card of the selected decks."""

    deck_ids: list[str] = Field(..., min_length=1)
    add_tags: list[str] = Field(default_factory=list)
    remove_tags: list[str] = Field(default_factory=list)
    suspend: bool = False

    @field_validator("add_tags", "remove_tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value):
        return clean_tags(value)


class BatchEditResult(CamelModel):
    """Outcome of a batch edit."""

    cards_edited: int
    decks_edited: int


class FlushResult(CamelModel):
    """Outcome of flushing the pending-save queue."""

    sent: int
    remaining: int


# OneNote sync schemas
class GeneratedCard(BaseModel):
    """A question/answer pair produced by the AI provider."""

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class OneNotePage(BaseModel):
    """Page metadata returned by Microsoft Graph."""

    id: str
    title: str = ""
    last_modified: datetime | None = Field(None, alias="lastModifiedDateTime")

    model_config = ConfigDict(populate_by_name=True)


class SyncResponse(BaseModel):
    """Result of a OneNote sync run."""

    success: bool
    cards_updated: int = Field(..., serialization_alias="cardsUpdated")


class SaveLastSyncRequest(CamelModel):
    """Remember the last synced notebook and section."""

    notebook_id: str
    section_id: str


class AuthStatus(CamelModel):
    """Authentication status of the browser session."""

    authenticated: bool
    user_name: str | None = None


class UserProfile(BaseModel):
    """Signed-in user information."""

    name: str | None = None
    email: str | None = None
    authenticated: bool = True


# Config schemas
class ConfigUpdate(BaseModel):
    """Update configuration."""

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    default_provider: str | None = Field(None, pattern="^(anthropic|openai)$")
    anthropic_model: str | None = None
    openai_model: str | None = None

    # Study defaults for new users
    new_cards_per_day: int | None = Field(None, ge=0, le=9999)
    reviews_per_day: int | None = Field(None, ge=0, le=9999)


class ConfigResponse(BaseModel):
    """Configuration response (without API keys)."""

    default_provider: str
    anthropic_model: str
    openai_model: str
    has_anthropic_key: bool
    has_openai_key: bool

    new_cards_per_day: int = 20
    reviews_per_day: int = 100
