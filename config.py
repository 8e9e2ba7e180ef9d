"""
Configuration management for the classroom economy engine.
Uses pydantic-settings for type-safe, centralized configuration.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'  # Allow extra fields in .env for flexibility
    )

    # Database
    database_url: str = "sqlite:///classroom_economy.db"
    db_echo: bool = False
    db_busy_timeout_ms: int = 5000
    db_isolation_level: str = "SERIALIZABLE"  # Ignored for SQLite (BEGIN IMMEDIATE is used)

    # Settlement scheduler
    sweep_interval_minutes: int = 10
    sweep_on_startup: bool = True

    # Logging
    log_level: str = "INFO"

    # Economy
    currency_unit: str = "coin"
    savings_cancel_notice_fraction: float = 2 / 3  # Share of the term shown before early cancellation

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured store is SQLite."""
        return self.database_url.startswith("sqlite")


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
