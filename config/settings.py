"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


# Freshness window: 12 hours
DEFAULT_CACHE_MAX_AGE_SECONDS = 12 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Google Sheets configuration
    google_sheets_api_key: Optional[str] = None
    google_spreadsheet_id: Optional[str] = None
    sheet_name: str = "All"
    sheet_range: str = "A:AZ"
    sheets_base_url: str = "https://sheets.googleapis.com/v4/spreadsheets"

    # Cache settings
    cache_file_path: Path = Path(".data/sheet_cache.json")
    cache_max_age_seconds: int = DEFAULT_CACHE_MAX_AGE_SECONDS

    # Remote fetch bound
    fetch_timeout_seconds: float = 30.0

    # Retries for rate-limited (429), 5xx and transport failures
    fetch_max_attempts: int = 3
    fetch_retry_multiplier: float = 1.0

    # How long a read waits for the cold-start bootstrap before moving on
    bootstrap_wait_seconds: float = 60.0

    scheduler_enabled: bool = True

    # Server
    port: int = 3000
    cors_allow_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_configured(self) -> bool:
        """True when both the API key and the spreadsheet ID are present."""
        return bool(self.google_sheets_api_key and self.google_spreadsheet_id)


settings = Settings()
