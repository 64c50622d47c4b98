"""Configuration management for the cook_property aggregator.

All configuration is loaded from environment variables and/or .env file.
Upstream site locations are configurable so a moved county host can be
followed without a code change.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root detection
PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = PROJECT_ROOT / ".env"

DATABASE_FILE = PROJECT_ROOT / "cook_property.db"
ABSOLUTE_DATABASE_URL = f"sqlite:///{DATABASE_FILE.as_posix()}"

DEFAULT_RESULT_MARKERS = [
    "ContentPlaceHolder1_PropertyInfo",
    "TAX BILLED AMOUNTS",
    "Property Characteristics for PIN",
    "lblResultTitle",
    "2024 Assessed Value",
]


def _resolve_database_url(url: str) -> str:
    """
    Convert relative SQLite paths to absolute paths based on PROJECT_ROOT.

    In-memory URLs are returned untouched.
    """
    if not url.startswith("sqlite:///"):
        return url

    path_part = url.replace("sqlite:///", "")
    if path_part == ":memory:" or not path_part:
        return url

    if path_part.startswith("./") or (not path_part.startswith("/") and ":" not in path_part):
        if path_part.startswith("./"):
            path_part = path_part[2:]
        absolute_path = PROJECT_ROOT / path_part
        return f"sqlite:///{absolute_path.as_posix()}"

    return url


class Settings(BaseSettings):
    """
    Runtime configuration powered by environment variables and .env overrides.

    All settings can be configured via:
    1. Environment variables (highest priority)
    2. .env file in project root (loaded automatically)
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default=ABSOLUTE_DATABASE_URL,
        alias="DATABASE_URL",
        description="SQLAlchemy connection string.",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # Upstream sites
    # -------------------------------------------------------------------------
    tax_portal_base_url: str = Field(
        default="https://www.cookcountypropertyinfo.com", alias="TAX_PORTAL_BASE_URL"
    )
    assessor_base_url: str = Field(
        default="https://www.cookcountyassessor.com", alias="ASSESSOR_BASE_URL"
    )
    clerk_base_url: str = Field(
        default="https://taxdelinquent.cookcountyclerkil.gov", alias="CLERK_BASE_URL"
    )
    recorder_base_url: str = Field(
        default="https://crs.cookcountyclerkil.gov", alias="RECORDER_BASE_URL"
    )
    gis_parcel_query_url: str = Field(
        default=(
            "https://gis.cookcountyil.gov/hosting/rest/services/Hosted/Parcel/"
            "FeatureServer/0/query"
        ),
        alias="GIS_PARCEL_QUERY_URL",
    )
    gis_imagery_export_url: str = Field(
        default=(
            "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/"
            "MapServer/export"
        ),
        alias="GIS_IMAGERY_EXPORT_URL",
    )
    gis_overlay_export_url: str = Field(
        default=(
            "https://gis.cookcountyil.gov/traditional/rest/services/cookVwrDynmc/"
            "MapServer/export"
        ),
        alias="GIS_OVERLAY_EXPORT_URL",
    )
    tax_portal_result_markers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RESULT_MARKERS),
        alias="TAX_PORTAL_RESULT_MARKERS",
        description="Substrings that identify a populated tax portal result page.",
    )

    # -------------------------------------------------------------------------
    # Google Maps
    # -------------------------------------------------------------------------
    google_api_key: Optional[str] = Field(default=None, alias="GOOGLE_API_KEY")
    google_request_timeout: int = Field(default=15, alias="GOOGLE_REQUEST_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # Scraper behaviour
    # -------------------------------------------------------------------------
    scraper_request_timeout: int = Field(default=30, alias="SCRAPER_REQUEST_TIMEOUT", ge=1)
    gis_request_timeout: int = Field(default=20, alias="GIS_REQUEST_TIMEOUT", ge=1)
    scraper_max_retries: int = Field(default=2, alias="SCRAPER_MAX_RETRIES", ge=1)
    scraper_retry_wait_seconds: float = Field(
        default=0.5, alias="SCRAPER_RETRY_WAIT_SECONDS", ge=0
    )
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        alias="SCRAPER_USER_AGENT",
    )
    enable_recorder_considerations: bool = Field(
        default=True,
        alias="ENABLE_RECORDER_CONSIDERATIONS",
        description="Fetch consideration amounts from recorder document pages",
    )
    recorder_consideration_timeout: int = Field(
        default=15, alias="RECORDER_CONSIDERATION_TIMEOUT", ge=1
    )
    recorder_consideration_limit: int = Field(
        default=25, alias="RECORDER_CONSIDERATION_LIMIT", ge=0
    )
    recorder_consideration_concurrency: int = Field(
        default=4, alias="RECORDER_CONSIDERATION_CONCURRENCY", ge=1
    )

    # -------------------------------------------------------------------------
    # Caching
    # -------------------------------------------------------------------------
    fetch_cache_ttl_seconds: int = Field(default=300, alias="FETCH_CACHE_TTL_SECONDS", ge=1)
    persistent_cache_max_age_hours: int = Field(
        default=168, alias="PERSISTENT_CACHE_MAX_AGE_HOURS", ge=1
    )

    # -------------------------------------------------------------------------
    # Bulk import
    # -------------------------------------------------------------------------
    import_batch_size: int = Field(default=5, alias="IMPORT_BATCH_SIZE", ge=1)
    import_batch_delay_seconds: float = Field(
        default=2.0, alias="IMPORT_BATCH_DELAY_SECONDS", ge=0
    )
    import_max_file_bytes: int = Field(
        default=10 * 1024 * 1024, alias="IMPORT_MAX_FILE_BYTES", ge=1
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")  # "text" or "json"
    environment: str = Field(default="local", alias="ENVIRONMENT")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT", ge=1)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Ensure log format is valid."""
        lower = v.lower()
        if lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return lower

    @field_validator(
        "tax_portal_base_url",
        "assessor_base_url",
        "clerk_base_url",
        "recorder_base_url",
    )
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Base URLs are joined with absolute paths."""
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_result_markers(self) -> "Settings":
        """An empty marker list would send every search to the fallback."""
        if not any(marker.strip() for marker in self.tax_portal_result_markers):
            raise ValueError("TAX_PORTAL_RESULT_MARKERS must contain at least one marker")
        return self

    @model_validator(mode="after")
    def resolve_database_url(self) -> "Settings":
        """Convert relative SQLite paths to absolute paths."""
        self.database_url = _resolve_database_url(self.database_url)
        return self

    # -------------------------------------------------------------------------
    # Helper Methods for Feature Detection
    # -------------------------------------------------------------------------

    @property
    def persistent_cache_max_age_seconds(self) -> int:
        return self.persistent_cache_max_age_hours * 3600

    def is_google_enabled(self) -> bool:
        """Check if Google imagery is configured (GOOGLE_API_KEY is set)."""
        return bool(self.google_api_key)

    def get_enabled_services(self) -> list[str]:
        """Get list of enabled optional services."""
        services = []
        if self.is_google_enabled():
            services.append("google_maps")
        if self.enable_recorder_considerations:
            services.append("recorder_considerations")
        return services


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and cached. To reload settings,
    call `get_settings.cache_clear()` first.

    Returns:
        Settings object with all configuration.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Clear settings cache and reload from environment.

    Useful for testing or after modifying .env file.
    """
    get_settings.cache_clear()
    return get_settings()
