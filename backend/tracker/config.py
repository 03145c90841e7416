"""Tracker bot configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.repositories.clip import DEFAULT_COLLECTION_TEMPLATE

logger = logging.getLogger(__name__)

# === Path Configuration ===
TRACKER_DIR = Path(__file__).parent
BACKEND_DIR = TRACKER_DIR.parent

BOT_NAME = "Niibot Tracker"

MIN_INTERVAL_SECONDS = 30


class TrackerSettings(BaseSettings):
    """Tracker bot settings"""

    model_config = SettingsConfigDict(
        env_file=TRACKER_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
    )

    # Discord
    discord_bot_token: str = Field(..., description="Discord bot token")
    discord_guild_id: str = Field(default="", description="Test guild for fast command sync")

    # Twitch app credentials
    client_id: str = Field(..., description="Twitch OAuth Client ID")
    client_secret: str = Field(..., description="Twitch OAuth Client Secret")

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")

    # Reconciliation
    tracker_interval_seconds: int = Field(
        default=420, description="Seconds between reconciliation passes"
    )

    # Clip documents
    clip_collection_path_template: str = Field(
        default=DEFAULT_COLLECTION_TEMPLATE, description="Clip collection, may contain {guildId}"
    )

    # GIF output
    gif_width: int = Field(default=480, gt=0, description="GIF width in pixels")
    gif_fps: int = Field(default=15, gt=0, description="GIF frames per second")
    gif_loop: int = Field(default=0, ge=0, description="GIF loop count, 0 loops forever")
    gif_max_duration_seconds: float | None = Field(
        default=None, gt=0, description="Clamp for GIF length"
    )

    # Object storage (Supabase Storage)
    storage_url: str = Field(default="", description="Supabase project URL")
    storage_service_key: str = Field(default="", description="Supabase service role key")
    gif_storage_bucket: str = Field(default="clips", description="Bucket for converted GIFs")
    gif_storage_folder: str = Field(
        default="converted-clips", description="Folder prefix for converted GIFs"
    )
    gif_storage_make_public: bool = Field(default=True, description="Serve GIFs from public URLs")
    gif_public_base_url: str = Field(
        default="", description="Public URL template, {path} is replaced"
    )
    gif_signed_url_ttl_seconds: int = Field(
        default=7 * 24 * 3600, gt=0, description="Signed URL lifetime when not public"
    )

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")
    port: int = Field(default=8080, description="Health server port")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL starts with postgresql://"""
        if not v.startswith("postgresql://"):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("tracker_interval_seconds")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < MIN_INTERVAL_SECONDS:
            logger.warning(
                f"TRACKER_INTERVAL_SECONDS={v} is below {MIN_INTERVAL_SECONDS}s, "
                f"using {MIN_INTERVAL_SECONDS}"
            )
            return MIN_INTERVAL_SECONDS
        return v

    @field_validator("storage_url")
    @classmethod
    def strip_storage_url(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper


@lru_cache
def get_settings() -> TrackerSettings:
    """Get cached settings instance"""
    return TrackerSettings()  # type: ignore[call-arg]
