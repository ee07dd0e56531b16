"""
Remote deck sources the card store fetches from and pushes to.
"""

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from onenote_flashcards.database import FlashcardDAO
from onenote_flashcards.exceptions import RemoteUnavailableError
from onenote_flashcards.schemas import IncomingDeck

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0


class DeckSource(Protocol):
    """Where decks come from and where the card store is pushed to."""

    def fetch_decks(self) -> dict[str, IncomingDeck]:
        """Fetch every deck keyed by deck id. Raises RemoteUnavailableError."""
        ...

    def push_decks(self, payload: dict[str, dict]) -> None:
        """Push a serialised card store. Raises RemoteUnavailableError."""
        ...


def _parse_decks(data) -> dict[str, IncomingDeck]:
    if not isinstance(data, dict):
        raise RemoteUnavailableError("Deck payload is not a mapping")
    try:
        return {deck_id: IncomingDeck.model_validate(deck) for deck_id, deck in data.items()}
    except ValidationError as e:
        raise RemoteUnavailableError("Malformed deck payload", e) from e


class RepositoryDeckSource:
    """Deck source backed by the server's own page deck table."""

    def __init__(self, flashcard_dao: FlashcardDAO, user_id: str):
        self.flashcard_dao = flashcard_dao
        self.user_id = user_id

    def fetch_decks(self) -> dict[str, IncomingDeck]:
        try:
            return self.flashcard_dao.get_decks(self.user_id)
        except (SQLAlchemyError, ValueError) as e:
            raise RemoteUnavailableError("Could not read flashcards", e) from e

    def push_decks(self, payload: dict[str, dict]) -> None:
        decks = _parse_decks(payload)
        try:
            self.flashcard_dao.save_decks(self.user_id, decks)
        except SQLAlchemyError as e:
            raise RemoteUnavailableError("Could not save flashcards", e) from e


class HttpDeckSource:
    """Deck source talking to a flashcards server over HTTP."""

    def __init__(
        self, base_url: str, client: httpx.Client | None = None, cookies: dict | None = None
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=REQUEST_TIMEOUT, cookies=cookies)

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise RemoteUnavailableError(
                f"{method} {path} failed with status {e.response.status_code}", e
            ) from e
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"{method} {path} failed: {e}", e) from e

    def fetch_decks(self) -> dict[str, IncomingDeck]:
        response = self._request("GET", "/api/flashcards")
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteUnavailableError("Flashcards response is not JSON", e) from e
        return _parse_decks(data)

    def push_decks(self, payload: dict[str, dict]) -> None:
        self._request("POST", "/api/flashcards/update", json=payload)
        logger.debug("Pushed %d decks to %s", len(payload), self.base_url)

    def close(self) -> None:
        self._client.close()
