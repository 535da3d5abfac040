"""
Configuration and settings for the card store.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_DB_PATH = PACKAGE_DIR.parent / "cardstore.db"
DEFAULT_MIGRATIONS_DIR = PACKAGE_DIR / "sql"


class Settings(BaseSettings):
    """Environment-backed settings for the store and the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Snapshot file holding the whole database image
    db_path: str = Field(default=str(DEFAULT_DB_PATH))
    db_save_debounce_seconds: float = Field(default=1.0, ge=0)
    db_migrations_dir: str = Field(default=str(DEFAULT_MIGRATIONS_DIR))
    db_install_signal_handlers: bool = Field(default=True)

    # Billing
    free_trial_days: int = Field(default=30, ge=0)

    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
