"""Environment configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Mock control (opt-in feature gate for offline runs and tests)
    mock_openai: bool = False  # Use canned completions (don't call the OpenAI API)

    # OpenAI configuration. The model id is not configurable, see openai_client.LOCKED_MODEL.
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    llm_max_tokens: int = 700
    llm_temperature: float = 0.6
    llm_timeout_seconds: float = 30.0

    # Input limits
    max_text_length: int = Field(default=20000, gt=0)

    # Rate limiting (fixed window per client identifier)
    rate_limit_requests: int = Field(default=10, gt=0)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_max_clients: int = Field(default=10000, gt=0)

    # When true, a model reply that cannot be parsed is answered with 200 and the
    # fallback plan instead of 500 with a "fallback" field.
    parse_failure_as_success: bool = False

    # Server configuration
    port: int = 3000
    host: str = "0.0.0.0"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    environment: Literal["development", "production"] = "development"
    cors_allow_origins: list[str] = ["*"]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def has_openai_key(self) -> bool:
        """Check if the completion service credential is configured."""
        return bool(self.openai_api_key.strip())

    @property
    def completion_configured(self) -> bool:
        """True when requests can be served, either for real or in mock mode."""
        return self.has_openai_key or self.mock_openai


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
