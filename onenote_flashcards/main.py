"""
FastAPI main application for the OneNote flashcards study app.
"""

import logging
import secrets

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from onenote_flashcards.auth import MicrosoftAuth, get_access_token, store_tokens
from onenote_flashcards.config import ConfigManager, Settings
from onenote_flashcards.controller import StudyController
from onenote_flashcards.database import (
    ConfigDAO,
    Database,
    FlashcardDAO,
    PageCacheDAO,
    PendingSaveDAO,
    StateDAO,
    SyncInfoDAO,
)
from onenote_flashcards.deck_source import RepositoryDeckSource
from onenote_flashcards.exceptions import (
    AuthenticationRequiredError,
    CardNotFoundError,
    DeckNotFoundError,
    FlashcardsError,
    InvalidRatingError,
    NoActiveSessionError,
    NothingToStudyError,
    RemoteUnavailableError,
    SessionInProgressError,
)
from onenote_flashcards.generation import FlashcardGenerator
from onenote_flashcards.graph import GraphClient
from onenote_flashcards.onenote_sync import OneNoteSyncService, get_status, save_last_active
from onenote_flashcards.schemas import (
    AuthStatus,
    BatchEditRequest,
    BatchEditResult,
    Card,
    CardCreate,
    CardUpdate,
    ConfigResponse,
    ConfigUpdate,
    CurrentCard,
    DetailedStats,
    DueCountsResponse,
    FlushResult,
    HeatmapDay,
    IncomingDeck,
    MergeResult,
    PresentResult,
    RatingRequest,
    SaveLastSyncRequest,
    SessionStatus,
    StatsOverview,
    StudySessionStart,
    SyncResponse,
    UserProfile,
    UserSettings,
    UserSettingsUpdate,
)

DEFAULT_USER_ID = "default-user"
SESSION_MAX_AGE = 24 * 60 * 60

settings = Settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="OneNote Flashcards",
    description="Flashcards generated from OneNote pages, studied with spaced repetition",
    version="1.0.0",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    SessionMiddleware, secret_key=settings.session_secret, max_age=SESSION_MAX_AGE
)

# Global instances
_db_instance: Database | None = None
_config_manager_instance: ConfigManager | None = None
_generator_instance: FlashcardGenerator | None = None
_auth_instance: MicrosoftAuth | None = None

# One study controller per signed-in user
_controllers: dict[str, StudyController] = {}

ERROR_STATUS_CODES = (
    (NothingToStudyError, 404),
    (DeckNotFoundError, 404),
    (CardNotFoundError, 404),
    (NoActiveSessionError, 409),
    (SessionInProgressError, 409),
    (InvalidRatingError, 422),
    (RemoteUnavailableError, 502),
)


def http_error(error: FlashcardsError) -> HTTPException:
    """Translate an application error into an HTTP error response."""
    if isinstance(error, AuthenticationRequiredError):
        return HTTPException(
            status_code=401, detail={"error": str(error), "redirect": "/auth/signin"}
        )
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def get_db() -> Database:
    """Dependency to get database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database(settings.database_url)
    return _db_instance


def get_config_manager() -> ConfigManager:
    """Dependency to get config manager instance."""
    global _config_manager_instance
    if _config_manager_instance is None:
        config_dao = ConfigDAO(get_db())
        _config_manager_instance = ConfigManager(config_dao=config_dao, settings=settings)
    return _config_manager_instance


def get_generator() -> FlashcardGenerator:
    """Dependency to get flashcard generator instance."""
    global _generator_instance
    if _generator_instance is None:
        config_manager = get_config_manager()
        _generator_instance = FlashcardGenerator(
            anthropic_api_key=config_manager.get_api_key("anthropic"),
            openai_api_key=config_manager.get_api_key("openai"),
            default_provider=config_manager.get_default_provider(),
            anthropic_model=config_manager.get_model("anthropic"),
            openai_model=config_manager.get_model("openai"),
            max_content_words=settings.max_content_words,
        )
    return _generator_instance


def refresh_generator():
    """Refresh flashcard generator after config update."""
    global _generator_instance
    _generator_instance = None


def get_auth() -> MicrosoftAuth:
    """Dependency to get the Microsoft identity client."""
    global _auth_instance
    if _auth_instance is None:
        _auth_instance = MicrosoftAuth(
            client_id=settings.ms_client_id,
            client_secret=settings.ms_client_secret,
            tenant_id=settings.ms_tenant_id,
            redirect_uri=settings.redirect_uri,
        )
    return _auth_instance


def get_current_user(request: Request) -> str:
    """Dependency resolving the signed-in user's id."""
    if not request.session.get("access_token"):
        raise HTTPException(
            status_code=401,
            detail={"error": "Authentication required", "redirect": "/auth/signin"},
        )
    return request.session.get("user_id") or DEFAULT_USER_ID


def get_graph_client(request: Request, auth: MicrosoftAuth = Depends(get_auth)) -> GraphClient:
    """Dependency to get a Graph client for the signed-in user."""
    try:
        return GraphClient(get_access_token(request.session, auth))
    except AuthenticationRequiredError as e:
        raise http_error(e) from e


def get_sync_service(
    graph: GraphClient = Depends(get_graph_client),
    db: Database = Depends(get_db),
    generator: FlashcardGenerator = Depends(get_generator),
) -> OneNoteSyncService:
    """Dependency to get the OneNote sync service."""
    return OneNoteSyncService(
        graph=graph,
        generator=generator,
        flashcard_dao=FlashcardDAO(db),
        page_cache_dao=PageCacheDAO(db),
        sync_info_dao=SyncInfoDAO(db),
        batch_size=settings.sync_batch_size,
        batch_delay_seconds=settings.sync_batch_delay_seconds,
    )


async def get_study_controller(
    user_id: str = Depends(get_current_user),
    db: Database = Depends(get_db),
    config_manager: ConfigManager = Depends(get_config_manager),
) -> StudyController:
    """
    Dependency to get the signed-in user's study controller.

    Runs on the event loop so one controller is created per user.
    """
    controller = _controllers.get(user_id)
    if controller is None:
        controller = StudyController(
            user_id=user_id,
            state_dao=StateDAO(db),
            pending_dao=PendingSaveDAO(db),
            source=RepositoryDeckSource(FlashcardDAO(db), user_id),
            default_settings=config_manager.get_default_user_settings(),
        )
        _controllers[user_id] = controller
    return controller


# Root endpoint
@app.get("/")
async def root():
    """API entry point."""
    return {"message": "OneNote Flashcards API is running. See /docs"}


# Health check
@app.get("/health")
async def health_check(db: Database = Depends(get_db)):
    """Health check endpoint."""
    return {"status": "healthy", "database": db.get_db_info()["connection_status"]}


# Authentication endpoints
@app.get("/auth/signin")
async def signin(
    request: Request, return_to: str | None = None, auth: MicrosoftAuth = Depends(get_auth)
):
    """Redirect to the Microsoft sign-in page."""
    state = secrets.token_hex(16)
    request.session["auth_state"] = state
    if return_to and return_to.startswith("/") and not return_to.startswith("//"):
        request.session["return_to"] = return_to
    return RedirectResponse(auth.build_auth_url(state), status_code=302)


@app.get("/auth/callback")
async def auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    auth: MicrosoftAuth = Depends(get_auth),
):
    """Handle the OAuth callback."""
    expected_state = request.session.pop("auth_state", None)
    if not state or state != expected_state:
        raise HTTPException(status_code=400, detail="Invalid state parameter")
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    try:
        tokens = auth.exchange_code(code)
        store_tokens(request.session, tokens)
        me = GraphClient(tokens.access_token).get_me()
    except AuthenticationRequiredError as e:
        logger.error("Authentication error: %s", e)
        raise http_error(e) from e
    except RemoteUnavailableError as e:
        raise http_error(e) from e

    request.session["user_id"] = me.get("id")
    request.session["user_email"] = me.get("mail") or me.get("userPrincipalName")
    request.session["user_name"] = me.get("displayName")
    logger.info("User %s signed in", request.session["user_id"])

    return RedirectResponse(request.session.pop("return_to", None) or "/", status_code=302)


@app.get("/auth/signout")
async def signout(request: Request):
    """Clear the session."""
    request.session.clear()
    return RedirectResponse("/", status_code=302)


@app.get("/api/auth/status", response_model=AuthStatus)
async def auth_status(request: Request):
    """Authentication status of the browser session."""
    return AuthStatus(
        authenticated=bool(request.session.get("access_token")),
        user_name=request.session.get("user_name"),
    )


@app.get("/api/me", response_model=UserProfile)
async def me(request: Request, user_id: str = Depends(get_current_user)):
    """Signed-in user information."""
    return UserProfile(
        name=request.session.get("user_name"), email=request.session.get("user_email")
    )


# OneNote browsing endpoints
@app.get("/api/notebooks")
async def get_notebooks(graph: GraphClient = Depends(get_graph_client)):
    """List the user's notebooks."""
    try:
        return graph.get_notebooks()
    except FlashcardsError as e:
        raise http_error(e) from e


@app.get("/api/notebooks/{notebook_id}/sections")
async def get_sections(notebook_id: str, graph: GraphClient = Depends(get_graph_client)):
    """List the sections of a notebook."""
    try:
        return graph.get_sections(notebook_id)
    except FlashcardsError as e:
        raise http_error(e) from e


# OneNote sync endpoints
@app.post("/api/sync/section/{section_id}", response_model=SyncResponse)
def sync_section(
    section_id: str,
    user_id: str = Depends(get_current_user),
    sync_service: OneNoteSyncService = Depends(get_sync_service),
):
    """Trigger an incremental sync of a section."""
    try:
        cards_updated = sync_service.sync_section(user_id, section_id)
    except FlashcardsError as e:
        raise http_error(e) from e
    return SyncResponse(success=True, cards_updated=cards_updated)


@app.post("/api/sync/full/{notebook_id}/{section_id}", response_model=SyncResponse)
def full_sync(
    notebook_id: str,
    section_id: str,
    user_id: str = Depends(get_current_user),
    sync_service: OneNoteSyncService = Depends(get_sync_service),
):
    """Trigger a full sync of a section."""
    try:
        cards_updated = sync_service.full_sync(user_id, notebook_id, section_id)
    except FlashcardsError as e:
        raise http_error(e) from e
    return SyncResponse(success=True, cards_updated=cards_updated)


@app.post("/api/sync/save-last")
async def save_last_sync(
    request_data: SaveLastSyncRequest,
    user_id: str = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Remember the notebook and section last synced."""
    save_last_active(SyncInfoDAO(db), request_data.notebook_id, request_data.section_id)
    return {"success": True}


@app.get("/api/sync/status")
async def sync_status(user_id: str = Depends(get_current_user), db: Database = Depends(get_db)):
    """Sync bookkeeping for every section."""
    return get_status(SyncInfoDAO(db))


# Server-side flashcard endpoints
@app.get("/api/flashcards")
async def get_flashcards(user_id: str = Depends(get_current_user), db: Database = Depends(get_db)):
    """All page decks of the current user."""
    decks = FlashcardDAO(db).get_decks(user_id)
    return {
        page_id: deck.model_dump(mode="json", by_alias=True, exclude_none=True)
        for page_id, deck in decks.items()
    }


@app.get("/api/flashcards/page/{page_id}")
async def get_page_flashcards(
    page_id: str, user_id: str = Depends(get_current_user), db: Database = Depends(get_db)
):
    """Flashcards of one page."""
    deck = FlashcardDAO(db).get_deck(user_id, page_id)
    if deck is None:
        return {"cards": []}
    return deck.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/api/flashcards/update")
async def update_flashcards(
    decks: dict[str, IncomingDeck],
    user_id: str = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Overwrite the pushed decks with the client's card store."""
    saved = FlashcardDAO(db).save_decks(user_id, decks)
    return {"success": True, "decks": saved}


# Study endpoints
@app.get("/api/study/due-counts", response_model=DueCountsResponse)
async def get_due_counts(controller: StudyController = Depends(get_study_controller)):
    """New, due and in-progress counts, overall and per deck."""
    return controller.get_due_counts()


@app.post("/api/study/sync", response_model=MergeResult)
async def sync_study_cards(controller: StudyController = Depends(get_study_controller)):
    """Merge the latest server decks into the study card store."""
    try:
        return controller.sync()
    except FlashcardsError as e:
        raise http_error(e) from e


@app.post("/api/study/session", response_model=SessionStatus)
async def start_session(
    options: StudySessionStart, controller: StudyController = Depends(get_study_controller)
):
    """Start a study session."""
    try:
        controller.start_study_session(options)
    except FlashcardsError as e:
        raise http_error(e) from e
    return controller.get_session_status()


@app.get("/api/study/session", response_model=SessionStatus)
async def get_session(controller: StudyController = Depends(get_study_controller)):
    """Status of the current study session."""
    return controller.get_session_status()


@app.delete("/api/study/session")
async def discard_session(controller: StudyController = Depends(get_study_controller)):
    """Discard the current or interrupted study session."""
    controller.discard_session()
    return {"message": "Study session discarded"}


@app.get("/api/study/session/current", response_model=PresentResult)
async def get_current_card(controller: StudyController = Depends(get_study_controller)):
    """The current card, or the summary once the session is complete."""
    try:
        return controller.get_current_card()
    except FlashcardsError as e:
        raise http_error(e) from e


@app.post("/api/study/session/reveal", response_model=CurrentCard)
async def reveal_answer(controller: StudyController = Depends(get_study_controller)):
    """Show the answer of the current card."""
    try:
        return controller.reveal_answer()
    except FlashcardsError as e:
        raise http_error(e) from e


@app.post("/api/study/session/rate", response_model=PresentResult)
async def rate_card(
    rating_request: RatingRequest, controller: StudyController = Depends(get_study_controller)
):
    """Rate the current card and move on."""
    try:
        return controller.apply_rating(rating_request.rating)
    except FlashcardsError as e:
        raise http_error(e) from e


@app.post("/api/study/session/exit", response_model=SessionStatus)
async def exit_session(controller: StudyController = Depends(get_study_controller)):
    """Leave the session, keeping it resumable."""
    try:
        controller.exit_session()
    except FlashcardsError as e:
        raise http_error(e) from e
    return controller.get_session_status()


@app.post("/api/study/session/resume", response_model=SessionStatus)
async def resume_session(controller: StudyController = Depends(get_study_controller)):
    """Continue an exited or interrupted session."""
    try:
        controller.resume_session()
    except FlashcardsError as e:
        raise http_error(e) from e
    return controller.get_session_status()


@app.get("/api/study/stats", response_model=StatsOverview)
async def get_stats(controller: StudyController = Depends(get_study_controller)):
    """Headline study statistics."""
    return controller.get_stats()


@app.get("/api/study/stats/detailed", response_model=DetailedStats)
async def get_detailed_stats(controller: StudyController = Depends(get_study_controller)):
    """Detailed study statistics."""
    return controller.get_detailed_stats()


@app.get("/api/study/stats/heatmap", response_model=list[HeatmapDay])
async def get_heatmap(
    days: int = Query(30, ge=1, le=366),
    controller: StudyController = Depends(get_study_controller),
):
    """Daily review counts for the activity heatmap."""
    return controller.get_heatmap(days)


@app.get("/api/study/settings", response_model=UserSettings)
async def get_study_settings(controller: StudyController = Depends(get_study_controller)):
    """Study preferences of the current user."""
    return controller.get_settings()


@app.put("/api/study/settings", response_model=UserSettings)
async def update_study_settings(
    update: UserSettingsUpdate, controller: StudyController = Depends(get_study_controller)
):
    """Update study preferences."""
    return controller.update_settings(update)


@app.post("/api/study/decks/{deck_id}/cards", response_model=Card)
async def create_card(
    deck_id: str,
    card_data: CardCreate,
    controller: StudyController = Depends(get_study_controller),
):
    """Add a card to a deck."""
    try:
        return controller.create_card(deck_id, card_data)
    except FlashcardsError as e:
        raise http_error(e) from e


@app.put("/api/study/decks/{deck_id}/cards/{card_id}", response_model=Card)
async def edit_card(
    deck_id: str,
    card_id: str,
    card_data: CardUpdate,
    controller: StudyController = Depends(get_study_controller),
):
    """Edit a card's content, tags or suspension."""
    try:
        return controller.edit_card(deck_id, card_id, card_data)
    except FlashcardsError as e:
        raise http_error(e) from e


@app.post("/api/study/batch-edit", response_model=BatchEditResult)
async def batch_edit(
    request_data: BatchEditRequest, controller: StudyController = Depends(get_study_controller)
):
    """Add or remove tags and suspend cards across whole decks."""
    try:
        return controller.batch_edit(request_data)
    except FlashcardsError as e:
        raise http_error(e) from e


@app.get("/api/study/tags", response_model=list[str])
async def get_tags(controller: StudyController = Depends(get_study_controller)):
    """Every tag used in the card store."""
    return controller.get_tags()


@app.post("/api/study/pending/flush", response_model=FlushResult)
async def flush_pending(controller: StudyController = Depends(get_study_controller)):
    """Retry queued pushes of the card store."""
    return controller.flush_pending_saves()


# Configuration endpoints
@app.get("/api/config", response_model=ConfigResponse)
async def get_config(config_manager: ConfigManager = Depends(get_config_manager)):
    """Get configuration."""
    return config_manager.get_config_response()


@app.put("/api/config", response_model=ConfigResponse)
async def update_config(
    config_update: ConfigUpdate, config_manager: ConfigManager = Depends(get_config_manager)
):
    """Update configuration."""
    result = config_manager.update_config(config_update)
    # Refresh services with new config
    refresh_generator()
    return result


@app.post("/api/config/test")
async def test_ai_connection(
    request: dict, generator: FlashcardGenerator = Depends(get_generator)
):
    """Test AI provider connection."""
    provider = request.get("provider")
    success, message = generator.test_connection(provider)
    return {"success": success, "message": message}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
