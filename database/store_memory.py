"""
InMemorySessionStore — Dict-backed session store with sliding expiry.

Features:
  - Zero dependencies (no database, no Redis)
  - One asyncio.Lock per session id: a read-modify-write for one id never
    interleaves with another for the same id, different ids never contend
  - Sliding TTL, reset on every committed update; expired sessions behave
    as absent and are recreated on next reference
  - All data lost on process restart

Locks are tracked with a user count so a sweep never drops a lock some
coroutine is holding or waiting on.
"""
from __future__ import annotations

import asyncio
import time
import structlog
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

from database.store_base import BaseSessionStore, SessionMutator
from models.errors import UnknownContextKeyError
from models.schemas import HistoryEntry, Session, SessionContext

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Record:
    session: Session
    expires_at: float                 # clock() value after which the record is dead


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0                    # holders + waiters


class InMemorySessionStore(BaseSessionStore):
    """
    Session store keyed by the caller-supplied session id.
    Returns deep copies; callers change state only through `update`.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        default_language: str = "en-IN",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._default_language = default_language
        self._clock = clock
        self._records: dict[str, _Record] = {}
        self._locks: dict[str, _KeyLock] = {}
        logger.info("inmemory_session_store_initialized", ttl_seconds=ttl_seconds)

    # ── Locking ───────────────────────────────────────────

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        key_lock = self._locks.get(session_id)
        if key_lock is None:
            key_lock = self._locks[session_id] = _KeyLock()
        key_lock.users += 1
        try:
            async with key_lock.lock:
                yield
        finally:
            key_lock.users -= 1

    def _in_use(self, session_id: str) -> bool:
        key_lock = self._locks.get(session_id)
        return key_lock is not None and key_lock.users > 0

    # ── Records (call only while holding the key lock) ────

    def _live(self, session_id: str) -> Optional[_Record]:
        record = self._records.get(session_id)
        if record is None:
            return None
        if record.expires_at <= self._clock():
            del self._records[session_id]
            logger.info("session_expired", session_id=session_id)
            return None
        return record

    def _create(self, session_id: str) -> _Record:
        record = _Record(
            session=Session(id=session_id, language=self._default_language),
            expires_at=self._clock() + self._ttl,
        )
        self._records[session_id] = record
        logger.info("session_created", session_id=session_id)
        return record

    # ── Public API ────────────────────────────────────────

    async def get_or_create(self, session_id: str) -> Session:
        async with self._locked(session_id):
            record = self._live(session_id) or self._create(session_id)
            return record.session.model_copy(deep=True)

    async def update(self, session_id: str, mutator: SessionMutator) -> Session:
        async with self._locked(session_id):
            # Expired mid-flight: start from a fresh default, never from stale data
            record = self._live(session_id) or self._create(session_id)
            working = record.session.model_copy(deep=True)

            replaced = mutator(working)
            if replaced is not None:
                working = replaced
            if working.id != session_id:
                raise ValueError(f"Session id is immutable ({session_id!r} → {working.id!r})")

            working.last_activity = _utcnow()
            record.session = working
            record.expires_at = self._clock() + self._ttl
            return working.model_copy(deep=True)

    async def merge_context(self, session_id: str, partial: dict[str, Any]) -> SessionContext:
        updates = {k: v for k, v in partial.items() if v is not None}
        unknown = set(updates) - SessionContext.known_keys()
        if unknown:
            logger.warning("context_merge_rejected", session_id=session_id, keys=sorted(unknown))
            raise UnknownContextKeyError(list(unknown))

        def _merge(session: Session) -> None:
            session.context = SessionContext.model_validate(
                {**session.context.model_dump(), **updates}
            )

        committed = await self.update(session_id, _merge)
        return committed.context

    async def append_history(self, session_id: str, entry: HistoryEntry | dict[str, Any]) -> None:
        record = entry if isinstance(entry, HistoryEntry) else HistoryEntry.model_validate(entry)

        def _append(session: Session) -> None:
            session.history.append(record.model_copy(update={"timestamp": _utcnow()}))

        await self.update(session_id, _append)

    async def restart(self, session_id: str) -> Session:
        committed = await self.update(session_id, lambda s: s.restart())
        logger.info("session_restarted", session_id=session_id)
        return committed

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired = [
            sid for sid, record in self._records.items()
            if record.expires_at <= now and not self._in_use(sid)
        ]
        for sid in expired:
            del self._records[sid]

        idle_locks = [
            sid for sid, key_lock in self._locks.items()
            if key_lock.users == 0 and sid not in self._records
        ]
        for sid in idle_locks:
            del self._locks[sid]

        if expired:
            logger.info("sessions_swept", removed=len(expired), remaining=len(self._records))
        return len(expired)

    # ── Stats (for /health) ───────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "sessions": len(self._records),
            "locks": len(self._locks),
        }
