"""
AI flashcard generation from OneNote page text.
Supports both Anthropic Claude and OpenAI GPT models.
"""

import json
import logging
import re

from anthropic import Anthropic
from openai import OpenAI
from pydantic import ValidationError

from onenote_flashcards.exceptions import GenerationError
from onenote_flashcards.html_text import page_to_text, truncate_words
from onenote_flashcards.schemas import GeneratedCard

logger = logging.getLogger(__name__)

GENERATION_SYSTEM_PROMPT = """You are a specialized AI that creates high-quality study flashcards from a student's notes.

Each flashcard should have:
1. A clear, focused question about one concept. Consider the surrounding context.
2. A concise but complete answer (1-3 sentences)
3. Be relevant for exam preparation

Format your response as a JSON array:
[
  {
    "question": "What is the pathophysiology of type 2 diabetes?",
    "answer": "Type 2 diabetes is characterized by insulin resistance in peripheral tissues and relative insulin deficiency, resulting in hyperglycemia."
  }
]

Respond with the JSON array only."""

FENCED_ARRAY = re.compile(r"```(?:json)?\s*(\[.*?\])\s*```", re.DOTALL)
BARE_ARRAY = re.compile(r"(\[.*\])", re.DOTALL)


def build_user_prompt(page_title: str, notes: str) -> str:
    return f"""Create flashcards from the following notes on "{page_title}".

Here are the notes:
{notes}"""


class FlashcardGenerator:
    """Service for generating flashcards from notes using AI."""

    def __init__(
        self,
        anthropic_api_key: str | None = None,
        openai_api_key: str | None = None,
        default_provider: str = "anthropic",
        anthropic_model: str = "claude-sonnet-4-20250514",
        openai_model: str = "gpt-4o",
        max_content_words: int = 6000,
    ):
        self.anthropic_api_key = anthropic_api_key
        self.openai_api_key = openai_api_key
        self.default_provider = default_provider
        self.anthropic_model = anthropic_model
        self.openai_model = openai_model
        self.max_content_words = max_content_words

        # Initialize clients
        self.anthropic_client = None
        self.openai_client = None

        if anthropic_api_key:
            self.anthropic_client = Anthropic(api_key=anthropic_api_key)

        if openai_api_key:
            self.openai_client = OpenAI(api_key=openai_api_key)

    def generate(
        self, content: str, page_title: str, provider: str | None = None
    ) -> list[GeneratedCard]:
        """
        Generate flashcards for one page.

        Args:
            content: Page HTML or plain text
            page_title: Title of the page, used in the prompt
            provider: Optional override for AI provider ("anthropic" or "openai")

        Returns:
            List of generated question/answer pairs

        Raises:
            ValueError: If no API key is configured for the provider
            GenerationError: If the response cannot be parsed into flashcards
        """
        provider = provider or self.default_provider
        notes = truncate_words(page_to_text(content), self.max_content_words)
        user_prompt = build_user_prompt(page_title, notes)

        if provider == "anthropic":
            response_text = self._complete_with_anthropic(user_prompt)
        elif provider == "openai":
            response_text = self._complete_with_openai(user_prompt)
        else:
            raise ValueError(f"Unknown provider: {provider}")

        return self._parse_flashcards(response_text)

    def _complete_with_anthropic(self, user_prompt: str) -> str:
        """Generate using Anthropic Claude."""
        if not self.anthropic_client:
            raise ValueError("Anthropic API key not configured")

        try:
            response = self.anthropic_client.messages.create(
                model=self.anthropic_model,
                max_tokens=4096,
                system=GENERATION_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": user_prompt}],
            )
            return response.content[0].text
        except Exception as e:
            raise GenerationError(f"Error generating with Anthropic: {e!s}", e) from e

    def _complete_with_openai(self, user_prompt: str) -> str:
        """Generate using OpenAI GPT."""
        if not self.openai_client:
            raise ValueError("OpenAI API key not configured")

        try:
            response = self.openai_client.chat.completions.create(
                model=self.openai_model,
                messages=[
                    {"role": "system", "content": GENERATION_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
            )
            return response.choices[0].message.content or ""
        except Exception as e:
            raise GenerationError(f"Error generating with OpenAI: {e!s}", e) from e

    def _extract_json_array(self, text: str) -> list:
        """
        Extract a JSON array from response text.
        Handles arrays wrapped in markdown code blocks or surrounded by prose.
        """
        for pattern in (FENCED_ARRAY, BARE_ARRAY):
            match = pattern.search(text)
            if match:
                try:
                    return json.loads(match.group(1))
                except json.JSONDecodeError:
                    pass

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GenerationError(
                f"Could not extract valid JSON from response: {text[:200]}", e
            ) from e

        if not isinstance(data, list):
            raise GenerationError("Invalid flashcards format: expected a JSON array")
        return data

    def _parse_flashcards(self, text: str) -> list[GeneratedCard]:
        cards = []
        for item in self._extract_json_array(text):
            try:
                cards.append(GeneratedCard.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed flashcard item: %r", item)
        return cards

    def test_connection(self, provider: str | None = None) -> tuple[bool, str]:
        """
        Test API connection for a provider.

        Args:
            provider: Provider to test ("anthropic" or "openai"), defaults to default_provider

        Returns:
            Tuple of (success: bool, message: str)
        """
        provider = provider or self.default_provider

        try:
            self.generate(
                content="Water boils at 100 degrees Celsius at sea level.",
                page_title="Connection test",
                provider=provider,
            )
            return True, f"{provider.capitalize()} API connection successful"
        except Exception as e:
            return False, f"{provider.capitalize()} API error: {e!s}"
