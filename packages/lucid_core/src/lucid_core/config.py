"""
Foundation settings for the Lucid ecosystem.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LucidSettings(BaseSettings):
    """
    Core settings shared by every Lucid package.
    Packages needing extra knobs should inherit from this.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # --- Basic Environment ---
    DEBUG: bool = True
    SECRET_KEY: str = ""
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # --- Database Core ---
    # DATABASE_URL is the "default" connection, DATABASES adds named ones.
    DATABASE_URL: str | None = None
    DATABASES: dict[str, str] = {}
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # --- ORM behaviour ---
    STRICT_MODE: bool = True

    # --- Pagination ---
    DEFAULT_PER_PAGE: int = 15
    MAX_PER_PAGE: int = 500

    @model_validator(mode="after")
    def validate_security(self) -> "LucidSettings":
        """Ensures production doesn't ship without a secret key."""
        if not self.DEBUG and not self.SECRET_KEY:
            raise ValueError("SECRET_KEY is mandatory in production mode.")
        return self

    def is_development(self) -> bool:
        return self.DEBUG or self.ENVIRONMENT == "development"

    def database_urls(self) -> dict[str, str]:
        """
        Return every configured connection URL keyed by connection name.

        >>> LucidSettings(DATABASE_URL="sqlite+aiosqlite:///a.db").database_urls()
        {'default': 'sqlite+aiosqlite:///a.db'}
        """
        urls = dict(self.DATABASES)
        if self.DATABASE_URL:
            urls.setdefault("default", self.DATABASE_URL)
        return urls


# Singleton instance for core use
lucid_settings = LucidSettings()
