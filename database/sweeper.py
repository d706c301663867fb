"""
SessionSweeper — background task that evicts expired sessions.

Expired sessions are already invisible to readers; the sweeper only
reclaims their memory and their idle per-key locks.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from database.store_base import BaseSessionStore

logger = structlog.get_logger()


class SessionSweeper:

    def __init__(self, store: BaseSessionStore, interval_seconds: float = 120):
        self.store = store
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        logger.info("session_sweeper_started", interval=self.interval)
        while True:
            try:
                await self.store.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("session_sweep_error", error=str(e))
            await asyncio.sleep(self.interval)
