from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import Optional

from .models import Timeout, as_timedelta
from .store import SQLiteSessionStore

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """Periodically purges expired session rows.

    A single background task sweeps, then sleeps for ``interval``. Failed
    sweeps are logged and retried on the next tick. At most one sweep is in
    flight at a time, including sweeps triggered through ``run_once``.
    """

    def __init__(self, store: SQLiteSessionStore, interval: Timeout) -> None:
        self._store = store
        self._interval = as_timedelta(interval, name="interval")
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def interval(self) -> timedelta:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop(), name="session-expiration-sweeper")
        logger.info("Session sweeper started (interval %ss)", self._interval.total_seconds())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Session sweeper stopped")

    async def run_once(self) -> Optional[int]:
        """Sweep once. Returns ``None`` without sweeping if a sweep is already running."""
        if self._lock.locked():
            logger.debug("Skipping session sweep; previous sweep still running")
            return None
        async with self._lock:
            removed = await self._store.cleanup_expired()
        if removed:
            logger.info("Swept %d expired session entries", removed)
        return removed

    async def _run_loop(self) -> None:
        delay = self._interval.total_seconds()
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Expired session sweep failed; retrying in %ss", delay)
            await asyncio.sleep(delay)
