"""Configuration management for sanctionsync.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """sanctionsync configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="SANCTIONSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    db_path: Path = Field(default=Path("data/sanctionsync.db"))
    db_echo: bool = Field(default=False)

    # OFAC feeds
    ofac_sdn_url: str = Field(default="https://www.treasury.gov/ofac/downloads/sdn.xml")
    ofac_consolidated_url: str = Field(
        default="https://www.treasury.gov/ofac/downloads/consolidated/consolidated.xml"
    )
    ofac_sdn_enabled: bool = Field(default=True)
    ofac_consolidated_enabled: bool = Field(default=False)
    ofac_entry_url_template: str = Field(
        default="https://sanctionssearch.ofac.treas.gov/Details.aspx?id={entry_id}"
    )

    # HTTP
    fetch_timeout: float = Field(default=120.0)
    user_agent: str = Field(default="sanctionsync/0.1.0")

    # Schedule (daily run at ingestion_hour:ingestion_minute, plus one after startup)
    ingestion_hour: int = Field(default=2, ge=0, le=23)
    ingestion_minute: int = Field(default=0, ge=0, le=59)
    startup_delay_seconds: int = Field(default=30, ge=0)

    # Freshness gate
    freshness_max_age_seconds: int = Field(default=24 * 60 * 60)
    marker_ttl_seconds: int = Field(default=7 * 24 * 60 * 60)

    # Reconciliation
    reconcile_concurrency: int = Field(default=4, ge=1)
    mark_missing_removed: bool = Field(default=False)


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
