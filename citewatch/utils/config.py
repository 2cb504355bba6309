"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra fields in .env file
        case_sensitive=False,  # Allow both UPPERCASE and lowercase
    )

    # SerpApi (required for live scans)
    SERPAPI_KEY: Optional[str] = None
    SERPAPI_BASE_URL: str = "https://serpapi.com"

    # Claude API (optional - enrichment is disabled without it)
    ANTHROPIC_API_KEY: Optional[str] = None
    CLAUDE_MODEL: str = "claude-sonnet-4-20250514"
    # Let Claude search the web while judging an answer; consulted URLs become analysis sources
    ANALYSIS_WEB_SEARCH: bool = True

    # Storage
    DATABASE_URL: Optional[str] = None

    # Scheduled trigger shared secret
    CRON_SECRET: Optional[str] = None

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    DEFAULT_LOCATION: str = "United States"

    # Timeouts (seconds). The whole scan must fit inside the host's 10s ceiling.
    SOURCE_TIMEOUT: float = 7.0
    ANALYSIS_TIMEOUT: float = 20.0

    # Batch scheduling
    SCAN_CONCURRENCY: int = 3
    SCAN_WINDOW_PAUSE: float = 0.5

    # Limits
    CACHE_TTL_HOURS: int = 24
    DAILY_SCAN_LIMIT: int = 100
    CRON_BATCH_SIZE: int = 10

    # Source options
    CAPTURE_SCREENSHOTS: bool = True
    AI_MODE_ENGINE: str = "google_ai_mode"
    DOMAIN_MATCH_POLICY: str = "host_suffix"
    ENRICH_ON_TEXT: bool = False

    @field_validator("SCAN_CONCURRENCY")
    @classmethod
    def _check_concurrency(cls, value: int) -> int:
        if not 1 <= value <= 5:
            raise ValueError("SCAN_CONCURRENCY must be between 1 and 5")
        return value

    @field_validator("DOMAIN_MATCH_POLICY")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        value = value.lower().strip()
        if value not in ("host_suffix", "substring"):
            raise ValueError("DOMAIN_MATCH_POLICY must be 'host_suffix' or 'substring'")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
