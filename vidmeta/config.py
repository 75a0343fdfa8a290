"""
Configuration module for vidmeta.

Uses pydantic-settings to load configuration from environment variables.
This allows the fetch pipeline (fields, languages, mirrors, retries) to be
tuned at deploy time without code changes.
"""

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MetadataField(str, Enum):
    """Metadata fields the pipeline knows how to fetch."""

    length = "length"
    thumbnail = "thumbnail"
    description = "description"
    caption = "caption"


class ThumbnailSize(str, Enum):
    """Thumbnail size tiers offered by Invidious mirrors."""

    large = "large"
    medium = "medium"
    small = "small"


# Fields served by the mirror metadata endpoint (one request covers all three)
DESCRIPTION_FIELDS = frozenset(
    {MetadataField.length, MetadataField.thumbnail, MetadataField.description}
)

DEFAULT_INSTANCES_URL = "https://api.invidious.io/instances.json?pretty=1&sort_by=type,users"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be set via either:
    - Prefixed: VIDMETA_<SETTING_NAME> (e.g., VIDMETA_FETCH_ATTEMPTS)
    - Unprefixed alias where one exists (e.g., HOST, PORT)
    - In .env file

    Collection settings (METADATA_FIELDS, CAPTION_LANGUAGES) are read as JSON, e.g.
    VIDMETA_CAPTION_LANGUAGES='["english", "spanish"]'.

    Environment Variables:
        HOST: Server host (default: 0.0.0.0)
        PORT: Server port (default: 8000)
        LOG_LEVEL: Logging level (default: info)
        METADATA_FIELDS: Metadata fields to fetch (default: all four)
        THUMBNAIL_SIZE: large, medium or small (default: small). "none" or an
            empty value disables thumbnail selection.
        CAPTION_LANGUAGES: Ordered caption language preferences, matched
            against track names and codes (default: english, then
            auto-generated english)
        INVIDIOUS_URL: Fixed mirror to use instead of discovered instances
        INSTANCES_URL: Instance directory used for mirror discovery
        FETCH_ATTEMPTS: Total attempts per sub-fetch (default: 3)
        AUTO_SAVE: Write fetched records to the database immediately
            instead of waiting for an explicit commit (default: false)
        HTTP_TIMEOUT: Outbound request timeout in seconds (default: 30)
        USER_AGENT: Outbound User-Agent header
        CACHE_MAXSIZE: Maximum records kept in memory (default: 10000)
        DATABASE_PATH: SQLite database file (default: database.db)
        BLOB_GC_INTERVAL: Seconds between blob garbage collection runs
        ENABLE_SECURITY_HEADERS: Enable security headers middleware
        MAX_BATCH_SIZE: Maximum entries per batch request (default: 50)
    """

    # ========== Server Configuration ==========

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    # ========== Fetch Pipeline ==========

    metadata_fields: set[MetadataField] = Field(default_factory=lambda: set(MetadataField))
    thumbnail_size: ThumbnailSize | None = ThumbnailSize.small
    caption_languages: list[str] = Field(
        default_factory=lambda: ["english", "english (auto generated)"]
    )

    # Mirror selection: a fixed override wins over the discovered pool
    invidious_url: str | None = None
    instances_url: str = DEFAULT_INSTANCES_URL

    # Initial attempt + 2 retries, no delay between attempts
    fetch_attempts: int = Field(default=3, ge=1)

    # Persist records as soon as they are fetched
    auto_save: bool = False

    # ========== Outbound HTTP ==========

    http_timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT

    # ========== Caching Settings ==========

    cache_maxsize: int = 10000

    # ========== Database Settings ==========

    # SQLite database file path (relative to the project directory or absolute)
    database_path: str = "database.db"
    blob_gc_interval: float = 3600.0

    # ========== API Settings ==========

    enable_security_headers: bool = True
    max_batch_size: int = 50

    model_config = SettingsConfigDict(
        env_prefix="VIDMETA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("thumbnail_size", mode="before")
    @classmethod
    def parse_thumbnail_size(cls, value):
        """Map an empty or "none" setting to None (no thumbnail)."""
        if isinstance(value, str) and value.strip().lower() in ("", "none", "null"):
            return None
        return value

    def wants(self, field: MetadataField) -> bool:
        """Return True if ``field`` is among the configured fields to fetch."""
        return field in self.metadata_fields


# Global settings instance - loaded at startup with environment variables
settings = Settings()
