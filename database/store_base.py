"""
Abstract Session Store — Interface for all session storage backends.

Implementations:
  - InMemorySessionStore (dict-based, per-key asyncio locks, sliding TTL)

Every write goes through `update` (or one of its shorthands), which runs
a mutator against the latest committed Session while holding the lock
for that session id. Reads return copies; the backing map is never
handed out.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from models.schemas import HistoryEntry, Session, SessionContext

# Mutates the Session in place, or returns a replacement Session.
SessionMutator = Callable[[Session], Optional[Session]]


class BaseSessionStore(ABC):
    """Interface that all session store backends must implement."""

    @abstractmethod
    async def get_or_create(self, session_id: str) -> Session:
        """Return the live session, creating a default one for an unknown or expired id."""
        ...

    @abstractmethod
    async def update(self, session_id: str, mutator: SessionMutator) -> Session:
        """Apply `mutator` to the latest committed state and commit atomically."""
        ...

    @abstractmethod
    async def merge_context(self, session_id: str, partial: dict[str, Any]) -> SessionContext:
        """Shallow-merge `partial` into the context, keeping keys it does not mention."""
        ...

    @abstractmethod
    async def append_history(self, session_id: str, entry: HistoryEntry | dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def restart(self, session_id: str) -> Session:
        """Reset step, mode, modal flags and context. The id is kept."""
        ...

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Drop expired sessions. Returns how many were removed."""
        ...

    @abstractmethod
    def stats(self) -> dict[str, int]:
        ...
