"""
Store selection.

STORE_BACKEND=memory gives an InMemoryStore (local runs, demos); anything else
uses Supabase.
"""

from __future__ import annotations

import logging
from typing import Optional

from repositories.store import MarketplaceStore
from services.config import Settings, get_settings

logger = logging.getLogger(__name__)


def build_store(settings: Optional[Settings] = None) -> MarketplaceStore:
    settings = settings or get_settings()

    if settings.store_backend == "memory":
        from repositories.memory_store import InMemoryStore

        logger.warning("Using in-memory store; data is lost on restart")
        return InMemoryStore()

    from repositories.supabase_store import SupabaseStore

    return SupabaseStore()


__all__ = ["build_store"]
