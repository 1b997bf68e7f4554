"""
Chore Ledger — Centralized configuration.

Loads all settings from .env. Every key has a usable default so the HTTP API
and the tests can start without secrets; the Telegram token is checked only
when the bot itself is started.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (only needed when running the bot)
    TELEGRAM_BOT_TOKEN: str = ""

    # SQLite ledger
    DATABASE_PATH: str = "data/chores.db"
    DB_POOL_SIZE: int = 10
    DB_BUSY_TIMEOUT_SECONDS: float = 5.0
    DB_ACQUIRE_TIMEOUT_SECONDS: float = 5.0

    # Probes and request handling
    READINESS_TIMEOUT_SECONDS: float = 0.5
    REPORT_TIMEOUT_SECONDS: float = 5.0

    # Weekly windows are computed in this zone
    TIMEZONE: str = "Asia/Tokyo"

    # HTTP API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8081

    @field_validator("DB_POOL_SIZE", "API_PORT", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator(
        "DB_BUSY_TIMEOUT_SECONDS",
        "DB_ACQUIRE_TIMEOUT_SECONDS",
        "READINESS_TIMEOUT_SECONDS",
        "REPORT_TIMEOUT_SECONDS",
        mode="before",
    )
    @classmethod
    def parse_seconds(cls, v: str | float) -> float:
        return float(v)

    @field_validator("DB_POOL_SIZE")
    @classmethod
    def check_pool_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("DB_POOL_SIZE must be at least 1")
        return v


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/chores.db"),
        DB_POOL_SIZE=os.getenv("DB_POOL_SIZE", "10"),
        DB_BUSY_TIMEOUT_SECONDS=os.getenv("DB_BUSY_TIMEOUT_SECONDS", "5"),
        DB_ACQUIRE_TIMEOUT_SECONDS=os.getenv("DB_ACQUIRE_TIMEOUT_SECONDS", "5"),
        READINESS_TIMEOUT_SECONDS=os.getenv("READINESS_TIMEOUT_SECONDS", "0.5"),
        REPORT_TIMEOUT_SECONDS=os.getenv("REPORT_TIMEOUT_SECONDS", "5"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Tokyo"),
        API_HOST=os.getenv("API_HOST", "0.0.0.0"),
        API_PORT=os.getenv("API_PORT", "8081"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
