"""
Feature flags. Set via environment variables (prefix FF_) or .env file.

When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Session metadata ─────────────────────────────────────────────
    use_database: bool = Field(default=True, alias="FF_USE_DATABASE")
    # ON  → Session records persisted via SQLAlchemy. Needs DATABASE_URL.
    # OFF → Records kept in process memory. Lost on restart.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
