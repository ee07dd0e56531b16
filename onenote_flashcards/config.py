"""
Configuration management for the flashcard app.
Handles Microsoft identity settings, API keys, model selection, sync tuning
and study defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from onenote_flashcards.schemas import ConfigResponse, ConfigUpdate, UserSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Microsoft identity platform
    ms_client_id: str = ""
    ms_client_secret: str = ""
    ms_tenant_id: str = "common"
    redirect_uri: str = "http://localhost:8000/auth/callback"
    session_secret: str = "change-me"

    # API Keys
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None

    # Default provider
    default_ai_provider: str = "anthropic"

    # Model settings
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_model: str = "gpt-4o"

    # Database
    database_url: str = "sqlite:///./db/flashcards.db"

    # OneNote sync
    sync_batch_size: int = 5
    sync_batch_delay_seconds: float = 2.0
    max_content_words: int = 6000

    # Study defaults for new users
    new_cards_per_day: int = 20
    reviews_per_day: int = 100
    card_order_new: str = "due"
    card_order_review: str = "due"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )


class ConfigManager:
    """Manager for application configuration."""

    def __init__(self, config_dao=None, settings: Settings | None = None):
        """
        Initialize configuration manager.

        Args:
            config_dao: Optional ConfigDAO for persistent storage
            settings: Settings to fall back on, read from the environment if omitted
        """
        self.settings = settings or Settings()
        self.config_dao = config_dao

    def _get(self, key: str, default):
        if self.config_dao:
            value = self.config_dao.get(key)
            if value:
                return value
        return default

    def get_config_response(self) -> ConfigResponse:
        """
        Get configuration response (without exposing API keys).

        Returns:
            ConfigResponse with safe config data
        """
        defaults = self.get_default_user_settings()
        return ConfigResponse(
            default_provider=self.get_default_provider(),
            anthropic_model=self.get_model("anthropic"),
            openai_model=self.get_model("openai"),
            has_anthropic_key=bool(self.get_api_key("anthropic")),
            has_openai_key=bool(self.get_api_key("openai")),
            new_cards_per_day=defaults.new_cards_per_day,
            reviews_per_day=defaults.reviews_per_day,
        )

    def update_config(self, config_update: ConfigUpdate) -> ConfigResponse:
        """
        Update configuration values.

        Args:
            config_update: Configuration updates

        Returns:
            Updated ConfigResponse
        """
        if not self.config_dao:
            raise ValueError("ConfigDAO not available for updates")

        for key, value in config_update.model_dump(exclude_none=True).items():
            self.config_dao.set(key, str(value))

        return self.get_config_response()

    def get_api_key(self, provider: str) -> str | None:
        """
        Get API key for a provider.

        Args:
            provider: "anthropic" or "openai"

        Returns:
            API key if available, None otherwise
        """
        if provider == "anthropic":
            return self._get("anthropic_api_key", self.settings.anthropic_api_key)
        elif provider == "openai":
            return self._get("openai_api_key", self.settings.openai_api_key)
        else:
            return None

    def get_model(self, provider: str) -> str:
        """
        Get model name for a provider.

        Args:
            provider: "anthropic" or "openai"

        Returns:
            Model name
        """
        if provider == "anthropic":
            return self._get("anthropic_model", self.settings.anthropic_model)
        elif provider == "openai":
            return self._get("openai_model", self.settings.openai_model)
        else:
            return ""

    def get_default_provider(self) -> str:
        """Get the default AI provider."""
        return self._get("default_provider", self.settings.default_ai_provider)

    def get_default_user_settings(self) -> UserSettings:
        """Study settings given to users who have not saved their own."""
        return UserSettings(
            new_cards_per_day=int(self._get("new_cards_per_day", self.settings.new_cards_per_day)),
            reviews_per_day=int(self._get("reviews_per_day", self.settings.reviews_per_day)),
            card_order_new=self.settings.card_order_new,
            card_order_review=self.settings.card_order_review,
        )
