"""
Application settings loaded from environment variables.

All configurable values are centralized here — no hard-coded values elsewhere.
Uses pydantic-settings for type-safe .env loading.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration — loaded from .env / environment variables."""

    # ── General ──────────────────────────────────────────────────────────
    APP_NAME: str = "Interceptor Response Core"
    ENVIRONMENT: Environment = Environment.DEVELOPMENT
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False
    RUN_MODE: str = "api"  # "api" | "daemon"

    # ── API Server ───────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 5000

    # ── Security ─────────────────────────────────────────────────────────
    JWT_SECRET: str = "change-me-in-production-please"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 60
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60

    # ── Stats ────────────────────────────────────────────────────────────
    RECENT_EVENT_LIMIT: int = Field(
        default=1000,
        ge=1,
        description="Number of most recent classified events kept for stats.",
    )

    # ── Rule Engine ──────────────────────────────────────────────────────
    RULE_BUFFER_MAX_EVENTS: int = Field(
        default=100_000,
        ge=1,
        description="Hard cap on the rolling buffer used by count conditions.",
    )
    RULE_HISTORY_LIMIT: int = 500
    RULE_FAULT_LIMIT: int = 200
    SEED_DEFAULT_RULES: bool = True

    # ── Block Lifecycle ──────────────────────────────────────────────────
    BLOCK_SWEEP_INTERVAL_SECONDS: float = Field(default=30.0, gt=0)
    BLOCK_AUDIT_LIMIT: int = 1000

    # ── Persistence ──────────────────────────────────────────────────────
    STATE_STORE_PATH: str = "data/response_state.json"
    STATE_CHECKPOINT_INTERVAL_SECONDS: float = Field(default=60.0, gt=0)

    # ── Ingestion ────────────────────────────────────────────────────────
    EVENT_QUEUE_MAX_SIZE: int = 10000
    COWRIE_LOG_PATHS: str = ""  # "path1:name1,path2:name2"

    # ── RBAC default credentials (demo only) ─────────────────────────────
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin"
    ANALYST_USERNAME: str = "analyst"
    ANALYST_PASSWORD: str = "analyst"
    VIEWER_USERNAME: str = "viewer"
    VIEWER_PASSWORD: str = "viewer"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
