"""Centralized configuration for the Klaviyo -> Airtable sync.

This module reads environment variables (optionally from a .env file) using
Pydantic's `BaseSettings`. Credentials are passed through verbatim; every
other value is a tunable with a sensible default.
"""
from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration pulled from environment variables."""

    # --- Credentials --------------------------------------------------------
    KLAVIYO_API_KEY: Optional[str] = None
    AIRTABLE_API_KEY: Optional[str] = None
    AIRTABLE_BASE_ID: Optional[str] = None

    # --- Klaviyo ------------------------------------------------------------
    KLAVIYO_BASE_URL: str = Field("https://a.klaviyo.com/api", description="Klaviyo REST API root")
    KLAVIYO_REVISION: str = Field("2023-10-15", description="Value of the `revision` header")

    # --- Airtable -----------------------------------------------------------
    AIRTABLE_BASE_URL: str = Field("https://api.airtable.com/v0", description="Airtable REST API root")
    AIRTABLE_FLOWS_TABLE: str = Field("Flows", description="Primary output table")
    AIRTABLE_FAILED_FLOWS_TABLE: str = Field("Failed_Flows", description="Table receiving failed flow actions")
    AIRTABLE_BATCH_SIZE: int = Field(10, ge=1, le=10, description="Records per create/update request")
    AIRTABLE_BATCH_DELAY_SECONDS: float = Field(0.12, ge=0, description="Pause between batches")

    # --- Retry --------------------------------------------------------------
    MAX_RETRIES: int = Field(3, ge=0, description="Retries for rate limited / server errors")
    INITIAL_BACKOFF_SECONDS: float = Field(2.0, ge=0, description="First backoff delay, doubled per retry")

    # --- Misc ---------------------------------------------------------------
    LOG_LEVEL: str = Field("INFO", description="Root log level for the CLI")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars rather than error
    )

    def missing_credentials(self) -> list[str]:
        """Names of the credential variables that are not set."""
        return [
            name for name in ("KLAVIYO_API_KEY", "AIRTABLE_API_KEY", "AIRTABLE_BASE_ID")
            if not getattr(self, name)
        ]


def get_settings() -> Settings:
    """Return a fresh Settings instance read from the environment."""
    return Settings()  # type: ignore[call-arg]


__all__ = [
    "Settings",
    "get_settings",
]
