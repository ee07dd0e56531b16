"""
OneNote sync pipeline: pages -> text -> AI flashcards -> server page decks.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from onenote_flashcards.database import FlashcardDAO, PageCacheDAO, SyncInfoDAO
from onenote_flashcards.exceptions import GenerationError, RemoteUnavailableError
from onenote_flashcards.generation import FlashcardGenerator
from onenote_flashcards.graph import GraphClient
from onenote_flashcards.schemas import IncomingCard, IncomingDeck, OneNotePage

logger = logging.getLogger(__name__)

LAST_ACTIVE_KEY = "lastActiveSync"


class OneNoteSyncService:
    """Turns the pages of a OneNote section into server-side flashcard decks."""

    def __init__(
        self,
        graph: GraphClient,
        generator: FlashcardGenerator,
        flashcard_dao: FlashcardDAO,
        page_cache_dao: PageCacheDAO,
        sync_info_dao: SyncInfoDAO,
        batch_size: int = 5,
        batch_delay_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.graph = graph
        self.generator = generator
        self.flashcard_dao = flashcard_dao
        self.page_cache_dao = page_cache_dao
        self.sync_info_dao = sync_info_dao
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self.sleep = sleep

    def sync_page(self, user_id: str, page: OneNotePage, now: datetime | None = None) -> int:
        """
        Regenerate the flashcards of one page.

        Returns:
            Number of cards generated, 0 if the page could not be processed
        """
        if now is None:
            now = datetime.now(UTC)
        title = page.title or "Untitled page"
        logger.info("Processing page %r (ID: %s)", title, page.id)

        try:
            content = self.graph.get_page_content(page.id)
            generated = self.generator.generate(content, title)
        except (RemoteUnavailableError, GenerationError, ValueError) as e:
            logger.error("Error syncing page %s: %s", page.id, e)
            return 0

        logger.info("Generated %d flashcards for %r", len(generated), title)
        deck = IncomingDeck(
            page_title=title,
            last_updated=now,
            cards=[IncomingCard(question=card.question, answer=card.answer) for card in generated],
        )
        self.flashcard_dao.save_deck(user_id, page.id, deck)
        self.page_cache_dao.touch(page.id, now)
        return len(generated)

    def sync_section(
        self,
        user_id: str,
        section_id: str,
        force_full: bool = False,
        now: datetime | None = None,
    ) -> int:
        """
        Sync the pages of a section modified since its last sync.

        Args:
            user_id: Owner of the generated decks
            section_id: OneNote section id
            force_full: Process every page regardless of the last sync time
            now: Sync instant

        Returns:
            Total number of cards generated

        Raises:
            RemoteUnavailableError: If the page list cannot be fetched
        """
        if now is None:
            now = datetime.now(UTC)
        logger.info("Syncing section %s", section_id)

        info = self.sync_info_dao.get(section_id) or {}
        last_sync = None
        if not force_full and info.get("lastSyncTime"):
            last_sync = datetime.fromisoformat(info["lastSyncTime"])
            logger.info("Last sync time for section %s: %s", section_id, last_sync.isoformat())

        pages = self.graph.get_pages(section_id, modified_since=last_sync)
        logger.info("Found %d pages to process in section %s", len(pages), section_id)

        info["lastSyncTime"] = now.isoformat()
        info["pages"] = len(pages)
        self.sync_info_dao.set(section_id, info)

        total = 0
        batch_count = -(-len(pages) // self.batch_size)
        for start in range(0, len(pages), self.batch_size):
            logger.info(
                "Processing batch %d of %d", start // self.batch_size + 1, batch_count
            )
            for page in pages[start : start + self.batch_size]:
                total += self.sync_page(user_id, page, now)
            if start + self.batch_size < len(pages):
                self.sleep(self.batch_delay_seconds)

        return total

    def full_sync(
        self, user_id: str, notebook_id: str, section_id: str, now: datetime | None = None
    ) -> int:
        """Reset a section's sync state and process all of its pages."""
        if now is None:
            now = datetime.now(UTC)
        logger.info("Starting full sync for notebook %s, section %s", notebook_id, section_id)
        self.sync_info_dao.set(
            section_id, {"lastSyncTime": None, "lastFullSync": now.isoformat()}
        )
        return self.sync_section(user_id, section_id, force_full=True, now=now)


def save_last_active(
    sync_info_dao: SyncInfoDAO, notebook_id: str, section_id: str, now: datetime | None = None
) -> None:
    """Remember the notebook and section the user last synced."""
    if now is None:
        now = datetime.now(UTC)
    sync_info_dao.set(
        LAST_ACTIVE_KEY,
        {"notebookId": notebook_id, "sectionId": section_id, "timestamp": now.isoformat()},
    )


def get_status(sync_info_dao: SyncInfoDAO) -> dict:
    """Sync bookkeeping for every section plus the last active selection."""
    return sync_info_dao.get_all()
