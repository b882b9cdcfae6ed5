"""
Central configuration. Credentials, database and HTTP settings in one place.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # model_api_key / model_name are credentials, not pydantic internals
        protected_namespaces=("settings_",),
    )

    # --- Environment ---
    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    # --- Database (session metadata) ---
    database_url: str = Field(
        default="sqlite+aiosqlite:///./stagehand_sessions.db",
        alias="DATABASE_URL",
    )

    # --- Stagehand / Browserbase credentials ---
    browserbase_api_key: str = Field(default="", alias="BROWSERBASE_API_KEY")
    browserbase_project_id: str = Field(default="", alias="BROWSERBASE_PROJECT_ID")
    model_api_key: str = Field(default="", alias="MODEL_API_KEY")
    stagehand_model_name: str = Field(default="openai/gpt-4o", alias="STAGEHAND_MODEL_NAME")

    # --- HTTP client ---
    # No read timeout by default: the service enforces per-call timeouts itself.
    http_connect_timeout: float = Field(default=10.0, alias="HTTP_CONNECT_TIMEOUT")
    http_read_timeout: float | None = Field(default=None, alias="HTTP_READ_TIMEOUT")

    # --- API ---
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
