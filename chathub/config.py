"""Runtime configuration loaded from ``CHATHUB_*`` environment variables."""
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_JWT_SECRET = "dev-secret-change-in-production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHATHUB_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "sqlite://database.db"
    generate_schemas: bool = True

    jwt_secret: str = DEV_JWT_SECRET
    jwt_ttl_seconds: int = 86400 * 7

    # Shared secret for the internal broadcast route; None disables the route.
    internal_token: Optional[str] = None

    # Upper bound on a single socket write during fan-out.
    send_timeout_seconds: float = 5.0

    log_level: Optional[str] = None
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])

    host: str = "0.0.0.0"
    port: int = 8000


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings", "DEV_JWT_SECRET"]
