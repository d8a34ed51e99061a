"""Application configuration from environment variables."""

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


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

    # Application settings
    environment: Environment = Field(
        default=Environment.DEVELOPMENT, description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8001, description="Bind port")
    progress_dir: Path = Field(
        default=Path("./progress"), description="Saved session progress directory"
    )

    # Media provider
    spotify_access_token: str = Field(default="", description="Spotify bearer token")
    spotify_api_base_url: str = Field(
        default="https://api.spotify.com/v1", description="Spotify Web API base URL"
    )
    itunes_search_url: str = Field(
        default="https://itunes.apple.com/search",
        description="iTunes search endpoint for alternative previews",
    )
    enable_preview_lookup: bool = Field(
        default=True, description="Look up substitute previews for unplayable tracks"
    )

    # Resolver policy
    resolver_timeout_seconds: float = Field(
        default=10.0, description="Provider fetch timeout"
    )
    resolver_retry_backoff_seconds: float = Field(
        default=1.0, description="Delay before the single resolver retry"
    )
    resolver_min_candidates: int = Field(
        default=20, description="Minimum raw candidates requested"
    )
    resolver_max_candidates: int = Field(
        default=100, description="Maximum raw candidates requested"
    )
    allow_fallback: bool = Field(
        default=False,
        description="Substitute built-in sample rounds when resolving fails (never in production)",
    )

    # Playback
    ready_timeout_seconds: float = Field(
        default=2.0, description="Wait for media ready before playing anyway"
    )
    reload_delay_seconds: float = Field(
        default=1.0, description="Delay before reloading media after a failure"
    )
    tick_interval_seconds: float = Field(
        default=0.1, description="Progress ticker interval"
    )
    default_round_seconds: float = Field(
        default=30.0, description="Default play duration per round"
    )

    # Scoring
    points_per_round: int = Field(default=1, description="Default points per round")

    @field_validator("progress_dir", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path) -> Path:
        """Convert string to Path."""
        return Path(v) if isinstance(v, str) else v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def fallback_enabled(self) -> bool:
        """Fallback rounds are a development affordance only."""
        return self.allow_fallback and not self.is_production

    @property
    def has_spotify_token(self) -> bool:
        """Check if a Spotify token is configured."""
        return bool(self.spotify_access_token)

    def ensure_progress_dir(self) -> None:
        """Create progress directory if it doesn't exist."""
        self.progress_dir.mkdir(parents=True, exist_ok=True)


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
