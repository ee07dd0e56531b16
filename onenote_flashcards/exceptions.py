"""
Exception hierarchy for the OneNote flashcards service.
"""


class FlashcardsError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, original_exception: Exception | None = None):
        super().__init__(message)
        self.original_exception = original_exception


class RemoteUnavailableError(FlashcardsError):
    """Raised when a remote store or API cannot be reached or rejects a call."""

    pass


class AuthenticationRequiredError(FlashcardsError):
    """Raised when no usable access token is available for the user."""

    pass


class InvalidRatingError(FlashcardsError, ValueError):
    """Raised for a rating outside again/hard/good/easy."""

    pass


class NoActiveSessionError(FlashcardsError):
    """Raised when a session operation is attempted without an active session."""

    pass


class NothingToStudyError(FlashcardsError):
    """Raised when queue construction selects no cards."""

    pass


class SessionInProgressError(FlashcardsError):
    """Raised when a sync is requested while a study session is active."""

    pass


class DeckNotFoundError(FlashcardsError):
    """Raised when a specified deck does not exist in the card store."""

    pass


class CardNotFoundError(FlashcardsError):
    """Raised when a specified card does not exist in its deck."""

    pass


class GenerationError(FlashcardsError):
    """Raised when the AI provider response cannot be turned into flashcards."""

    pass
