"""
Application configuration using pydantic-settings.
All settings are loaded from environment variables.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the directory containing this file (app/)
APP_DIR = Path(__file__).resolve().parent
# Project root is one level up
PROJECT_ROOT = APP_DIR.parent
# .env file path
ENV_FILE = PROJECT_ROOT / ".env"

# Load .env file into environment variables BEFORE pydantic-settings reads them
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=True)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App
    app_name: str = "Super Package Pricing API"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:3000"]

    # Database
    database_url: str = "postgresql+asyncpg://localhost/super_packages"

    # CSV import
    csv_max_bytes: int = 5 * 1024 * 1024
    csv_allowed_content_types: List[str] = [
        "text/csv",
        "application/csv",
        "application/vnd.ms-excel",
        "text/plain",
    ]

    # Pricing / quotes
    price_sync_tolerance: Decimal = Decimal("0.01")
    version_history_limit: int = 50

    @field_validator("cors_origins", "csv_allowed_content_types", mode="before")
    @classmethod
    def parse_list(cls, v):
        if isinstance(v, str):
            import json
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(",")]
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
