"""
Database layer — Session persistence.

Backends:
  - In-memory (dict-based, per-key locks, sliding TTL)

Quick start:
  from database import create_store
  store = create_store()
  session = await store.get_or_create("abc")
  await store.merge_context("abc", {"name": "Asha"})
"""
from database.store_base import BaseSessionStore, SessionMutator
from database.store_memory import InMemorySessionStore
from database.store_factory import create_store, reset_store
from database.sweeper import SessionSweeper

__all__ = [
    # Store interface
    "BaseSessionStore", "SessionMutator",
    # Store backends
    "InMemorySessionStore",
    # Factory
    "create_store", "reset_store",
    # Background eviction
    "SessionSweeper",
]
