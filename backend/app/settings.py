from __future__ import annotations

import hashlib
import logging
import os
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    secret_key: str = Field(default="dev-only-secret-change-me-in-production", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    database_url: str = Field(default="sqlite+aiosqlite:///./app.db", alias="DATABASE_URL")

    max_players: int = Field(default=8, alias="MAX_PLAYERS")
    min_players: int = Field(default=2, alias="MIN_PLAYERS")
    heartbeat_interval_sec: float = Field(default=10.0, alias="HEARTBEAT_INTERVAL_SEC")
    stale_heartbeat_multiple: int = Field(default=3, alias="STALE_HEARTBEAT_MULTIPLE")
    invite_max_uses: int = Field(default=10, alias="INVITE_MAX_USES")
    room_code_attempts: int = Field(default=5, alias="ROOM_CODE_ATTEMPTS")
    child_games: List[str] = Field(default_factory=lambda: ["drop-deuce", "drop-a-deuce"], alias="CHILD_GAMES")

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def stale_after_sec(self) -> float:
        return self.heartbeat_interval_sec * self.stale_heartbeat_multiple

    def masked_secret(self) -> str:
        if not self.secret_key:
            return "<empty>"
        if len(self.secret_key) <= 4:
            return "***"
        return f"{self.secret_key[:2]}***{self.secret_key[-2:]}"

    def log_status(self) -> None:
        env_name = os.getenv("RENDER_SERVICE_NAME") or os.getenv("ENV", "unknown")
        secret_hash = hashlib.sha256(self.secret_key.encode()).hexdigest()[:8]
        logger.info(
            "Settings: secret_key=%s (hash=%s), database=%s, env=%s",
            self.masked_secret(),
            secret_hash,
            self.database_url.split("://", 1)[0],
            env_name,
        )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.log_status()
    return settings


settings = get_settings()
