"""Application configuration from environment variables."""

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ModelProvider(str, Enum):
    """LLM provider types."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GROQ = "groq"


class ModelType(str, Enum):
    """Known recommender models."""

    GROQ_LLAMA_70B = "groq/llama-3.3-70b-versatile"
    CLAUDE_HAIKU = "claude-3-5-haiku-20241022"
    GPT_4O_MINI = "gpt-4o-mini"
    LLAMA_70B = "meta-llama/llama-3.3-70b-instruct"


# =============================================================================
# Settings
# =============================================================================


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Keys
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    groq_api_key: str = Field(default="", description="Groq API key")
    tmdb_api_key: str = Field(default="", description="TMDB API key")

    # Application settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    data_dir: Path | None = Field(
        default=Path("./data"),
        description="Directory for the state snapshot (empty for memory only)",
    )

    # Recommender
    recommender_model: str = Field(
        default=ModelType.GROQ_LLAMA_70B.value,
        description="Model used for round candidates and tie-breaks",
    )
    recommender_attempts: int = Field(
        default=2, description="Attempts before a malformed payload is surfaced"
    )

    # Identity
    account_header: str = Field(
        default="X-Account-Id", description="Header carrying the account id"
    )
    guest_session_secret: str = Field(
        default="default-secret-change-in-production",
        description="HMAC secret for guest tokens",
    )
    guest_cookie_name: str = Field(default="vw_guest_participant")
    guest_header: str = Field(
        default="X-Guest-Token", description="Guest token header for non-browser clients"
    )
    guest_token_ttl_days: int = Field(default=30, description="Guest token TTL")

    # Decision rules
    max_rounds: int = Field(default=5, description="Round ceiling before AI resolution")
    candidates_per_round: int = Field(default=5, description="Movies per ballot")
    alternates_count: int = Field(default=2, description="Alternates on AI resolution")

    # Progression coordination
    progression_lease_seconds: float = Field(default=60.0)
    progression_poll_interval: float = Field(default=0.25)

    # Movie catalog
    tmdb_base_url: str = Field(default="https://api.themoviedb.org/3")
    catalog_languages: list[str] = Field(default_factory=lambda: ["en", "hi"])
    catalog_min_year: int = Field(default=2000)

    @field_validator("data_dir", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path | None) -> Path | None:
        """Convert string to Path; empty means memory only."""
        if v is None or v == "":
            return None
        return Path(v) if isinstance(v, str) else v

    @property
    def has_anthropic_key(self) -> bool:
        """Check if Anthropic API key is configured."""
        return bool(
            self.anthropic_api_key and self.anthropic_api_key != "sk-ant-..."
        )

    @property
    def has_openai_key(self) -> bool:
        """Check if OpenAI API key is configured."""
        return bool(self.openai_api_key and self.openai_api_key != "sk-...")

    @property
    def has_openrouter_key(self) -> bool:
        """Check if OpenRouter API key is configured."""
        return bool(
            self.openrouter_api_key and self.openrouter_api_key != "sk-or-..."
        )

    @property
    def has_groq_key(self) -> bool:
        """Check if Groq API key is configured."""
        return bool(self.groq_api_key and self.groq_api_key != "gsk_...")

    @property
    def guest_token_ttl_ms(self) -> int:
        return self.guest_token_ttl_days * 24 * 60 * 60 * 1000

    def get_model_provider(self, model: str) -> ModelProvider:
        """Determine which provider to use for a given model."""
        if model.startswith("groq/"):
            return ModelProvider.GROQ

        # Any other prefixed model goes through OpenRouter
        if "/" in model:
            return ModelProvider.OPENROUTER

        if model.startswith("gpt-"):
            return ModelProvider.OPENAI

        if model.startswith("claude-"):
            return ModelProvider.ANTHROPIC

        return ModelProvider.OPENROUTER

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)


# =============================================================================
# Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
