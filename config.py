"""
Application settings.

All values come from the environment (or a local .env file). Names are
case-insensitive, e.g. DATABASE_URL / database_url.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- Database ---
    database_url: Optional[str] = None
    database_name: str = "eventhub"

    # --- HTTP ---
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8000

    # --- Logging ---
    log_level: str = "INFO"

    # --- Contact form (Resend) ---
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"
    contact_from: str = "Contacto <no-reply@example.com>"
    contact_to: str = "contacto@example.com"

    # --- Exchange rates ---
    open_exchange_rates_api_key: Optional[str] = None
    open_exchange_rates_url: str = "https://openexchangerates.org/api/latest.json"

    # --- Uploads ---
    max_upload_bytes: int = 10 * 1024 * 1024

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
