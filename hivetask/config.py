"""
HiveTask — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from hivetask/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Document store: "memory" | "firestore"
    STORE_PROVIDER: str = "memory"

    # Firestore REST (only needed when STORE_PROVIDER=firestore)
    FIRESTORE_PROJECT_ID: str = ""
    FIRESTORE_DATABASE: str = "(default)"
    FIRESTORE_API_KEY: str = ""
    FIRESTORE_POLL_SECONDS: float = 2.0
    STORE_TIMEOUT_SECONDS: float = 10.0

    # Local session cache (SQLite)
    CACHE_PATH: str = "data/session.db"

    # Workspace
    INVITE_CODE_LENGTH: int = 8
    NOTIFICATION_LIMIT: int = 30
    DEFAULT_DISPLAY_NAME: str = "Hive User"

    LOG_LEVEL: str = "INFO"

    @field_validator("STORE_PROVIDER", mode="before")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return (v or "memory").strip().lower()

    @field_validator("INVITE_CODE_LENGTH", "NOTIFICATION_LIMIT", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("FIRESTORE_POLL_SECONDS", "STORE_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def parse_seconds(cls, v: str | float) -> float:
        return float(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    provider = os.getenv("STORE_PROVIDER", "memory").strip().lower()
    project_id = os.getenv("FIRESTORE_PROJECT_ID", "")

    if provider == "firestore" and (not project_id or project_id.startswith("your-")):
        print("ERROR: FIRESTORE_PROJECT_ID is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        STORE_PROVIDER=provider,
        FIRESTORE_PROJECT_ID=project_id,
        FIRESTORE_DATABASE=os.getenv("FIRESTORE_DATABASE", "(default)"),
        FIRESTORE_API_KEY=os.getenv("FIRESTORE_API_KEY", ""),
        FIRESTORE_POLL_SECONDS=os.getenv("FIRESTORE_POLL_SECONDS", "2.0"),
        STORE_TIMEOUT_SECONDS=os.getenv("STORE_TIMEOUT_SECONDS", "10.0"),
        CACHE_PATH=os.getenv("CACHE_PATH", "data/session.db"),
        INVITE_CODE_LENGTH=os.getenv("INVITE_CODE_LENGTH", "8"),
        NOTIFICATION_LIMIT=os.getenv("NOTIFICATION_LIMIT", "30"),
        DEFAULT_DISPLAY_NAME=os.getenv("DEFAULT_DISPLAY_NAME", "Hive User"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton, imported by all other modules as:
#   from hivetask.config import settings
settings = _load_settings()
