"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a clear
error message.

Usage:
    from transaction_engine.config import get_settings
    settings = get_settings()
    print(settings.compliance_step_slug)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the transaction workflow engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://workflow:workflow_dev"
        "@localhost:5432/transaction_workflow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Compliance automation ---
    compliance_step_slug: str = "firm-pending"
    compliance_rule_label: str = "FINTRAC"

    # --- Step gates ---
    # Steps that additionally need an accepted offer before they can be left.
    offer_gate_slugs: str = "negotiation,en-negociation,offer-submitted"
    escape_reason_min_length: int = 10

    # --- Fire-and-forget side effects ---
    side_effect_max_attempts: int = 3
    side_effect_max_pending: int = 100

    # --- Localisation ---
    default_locale: Literal["fr", "en"] = "fr"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def offer_gate_slug_list(self) -> list[str]:
        """Parse comma-separated offer gate slugs into a list."""
        if not self.offer_gate_slugs:
            return []
        return [s.strip() for s in self.offer_gate_slugs.split(",") if s.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
