"""
Recurgen — Centralized configuration.

Loads all settings from .env and validates them once at import time.
Every other module reads configuration from the `settings` singleton.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from recurgen/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/recurgen.db"

    # Rolling window used by the daily generation run (today + N days)
    GENERATION_WINDOW_DAYS: int = 14

    # Window generated right after a rule is created or edited
    BACKFILL_DAYS: int = 30

    # IANA zone used to decide which calendar date "today" is
    TIMEZONE: str = "UTC"

    LOG_LEVEL: str = "INFO"

    @field_validator("GENERATION_WINDOW_DAYS", "BACKFILL_DAYS", mode="before")
    @classmethod
    def parse_days(cls, v: str | int) -> int:
        return int(v)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"


def _load_settings() -> Settings:
    """Load settings from environment, validating the generation windows."""
    window = os.getenv("GENERATION_WINDOW_DAYS", "14")
    backfill = os.getenv("BACKFILL_DAYS", "30")

    for name, raw in (("GENERATION_WINDOW_DAYS", window), ("BACKFILL_DAYS", backfill)):
        if not raw.strip().isdigit() or int(raw) < 1:
            print(f"ERROR: {name} must be a positive integer, got {raw!r}", file=sys.stderr)
            sys.exit(1)

    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/recurgen.db"),
        GENERATION_WINDOW_DAYS=window,
        BACKFILL_DAYS=backfill,
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton, imported by all other modules as:
#   from recurgen.config import settings
settings = _load_settings()
