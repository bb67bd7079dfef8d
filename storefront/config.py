# storefront/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # backend REST API (with /api prefix)
    API_URL: str = "http://localhost:3001/api"
    API_TIMEOUT_SEC: float = 10.0

    # base for relative image urls ("/uploads/x.jpg"); empty => derived from API_URL
    PUBLIC_BASE_URL: str = ""

    FLEET_POLL_INTERVAL_SEC: float = 30.0
    BOT_START_TIMEOUT_SEC: float = 15.0
    BOT_STOP_TIMEOUT_SEC: float = 10.0

    # ~30 msg/sec Telegram limit
    BROADCAST_DELAY_MS: int = 35
    # X-Broadcast-Secret for POST /fleet/{bot_id}/broadcast; empty => endpoint disabled
    BROADCAST_SECRET: str = ""

    SESSION_MAX_ENTRIES: int = 10_000
    SESSION_IDLE_TTL_SEC: int = 3600

    CATALOG_PAGE_SIZE: int = 8

    PORT: int = 8080
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def public_base_url(self) -> str:
        if self.PUBLIC_BASE_URL.strip():
            return self.PUBLIC_BASE_URL.strip().rstrip("/")
        base = self.API_URL.rstrip("/")
        if base.endswith("/api"):
            base = base[: -len("/api")]
        return base


settings = Settings()
