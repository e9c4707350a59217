"""
Runtime configuration.

Values come from environment variables; a .env file in the project root is
loaded first so local runs do not need exported variables.

Environment variables:
- STORE_BACKEND: "supabase" (default) or "memory"
- SUPABASE_URL, SUPABASE_KEY: required when STORE_BACKEND=supabase
- WEBHOOK_URL, WEBHOOK_SECRET, WEBHOOK_TIMEOUT_SECONDS
- QUOTE_TIMER_MINUTES, QUOTE_WARNING_MINUTES
- PRICING_CACHE_TTL_SECONDS
- EXPIRY_SWEEP_SECONDS, LOW_BALANCE_CHECK_SECONDS, WEBHOOK_RETRY_SECONDS
- ENABLE_SCHEDULER, LOG_LEVEL
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    store_backend: str = "supabase"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    webhook_url: str = "http://localhost:5000/api/webhooks"
    webhook_secret: str = "lead-core-webhook-secret"
    webhook_timeout_seconds: float = 10.0

    quote_timer_minutes: int = 60
    quote_warning_minutes: int = 10
    pricing_cache_ttl_seconds: float = 60.0

    expiry_sweep_seconds: float = 60.0
    low_balance_check_seconds: float = 3600.0
    webhook_retry_seconds: float = 900.0
    enable_scheduler: bool = True

    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read Settings from the environment (no caching)."""

    return Settings(
        store_backend=os.getenv("STORE_BACKEND", "supabase").strip().lower(),
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_KEY"),
        webhook_url=os.getenv("WEBHOOK_URL", "http://localhost:5000/api/webhooks"),
        webhook_secret=os.getenv("WEBHOOK_SECRET", "lead-core-webhook-secret"),
        webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10")),
        quote_timer_minutes=int(os.getenv("QUOTE_TIMER_MINUTES", "60")),
        quote_warning_minutes=int(os.getenv("QUOTE_WARNING_MINUTES", "10")),
        pricing_cache_ttl_seconds=float(os.getenv("PRICING_CACHE_TTL_SECONDS", "60")),
        expiry_sweep_seconds=float(os.getenv("EXPIRY_SWEEP_SECONDS", "60")),
        low_balance_check_seconds=float(os.getenv("LOW_BALANCE_CHECK_SECONDS", "3600")),
        webhook_retry_seconds=float(os.getenv("WEBHOOK_RETRY_SECONDS", "900")),
        enable_scheduler=_env_bool("ENABLE_SCHEDULER", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


__all__ = ["Settings", "get_settings", "load_settings"]
