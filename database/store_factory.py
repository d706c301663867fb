"""
Store Factory — Create the session store backend from configuration.

Configuration in settings.yaml:
    session:
      # Session store backend: where conversation state lives
      #   "memory": in-memory dicts with sliding TTL
      store_backend: "memory"
      ttl_seconds: 3600

Usage:
    from database.store_factory import create_store
    store = create_store(settings.session)   # singleton, created on first call
"""
from __future__ import annotations

import structlog
from typing import Optional

from config.settings import SessionConfig, get_settings
from database.store_base import BaseSessionStore

logger = structlog.get_logger()

_instance: Optional[BaseSessionStore] = None


def create_store(config: SessionConfig = None, default_language: str = None) -> BaseSessionStore:
    """
    Factory: create the session store backend.

    Args:
        config: SessionConfig (defaults to the loaded settings)
        default_language: locale given to freshly created sessions
    """
    global _instance
    if _instance is not None:
        return _instance

    settings = get_settings()
    config = config or settings.session
    default_language = default_language or settings.default_language

    if config.store_backend != "memory":
        raise ValueError(f"Unsupported session store backend: {config.store_backend!r}")

    from database.store_memory import InMemorySessionStore
    _instance = InMemorySessionStore(
        ttl_seconds=config.ttl_seconds,
        default_language=default_language,
    )
    logger.info("store_created", backend="memory", ttl_seconds=config.ttl_seconds)
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
