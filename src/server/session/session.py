from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Optional

from .errors import SessionNotEstablishedError, SessionStoreError, SessionUnavailableError
from .models import (
    SessionState,
    Timeout,
    as_timedelta,
    normalise_value,
    validate_key,
)

if TYPE_CHECKING:  # pragma: no cover
    from .store import SQLiteSessionStore

logger = logging.getLogger(__name__)


class Session:
    """Request-scoped view over one session's entries.

    Entries are loaded on first access and mutated in memory only. ``commit``
    writes the full entry set back when something changed since the load.
    """

    def __init__(
        self,
        store: SQLiteSessionStore,
        session_key: str,
        *,
        idle_timeout: Timeout,
        io_timeout: Timeout,
        try_establish: Callable[[], bool],
        is_new: bool,
    ) -> None:
        self._store = store
        self._session_key = session_key
        self._idle_timeout = as_timedelta(idle_timeout, name="idle_timeout")
        self._io_timeout = as_timedelta(io_timeout, name="io_timeout")
        self._try_establish = try_establish
        self._is_new = is_new
        self._established = False
        self._entries: dict[str, str] = {}
        self._state = SessionState.UNLOADED
        self._is_available = False
        self._loaded_from_store = False

    @property
    def id(self) -> str:
        return self._session_key

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def idle_timeout(self) -> timedelta:
        return self._idle_timeout

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_available(self) -> bool:
        """True once entries were loaded from the store without error."""
        return self._is_available

    async def load(self) -> None:
        if self._state is not SessionState.UNLOADED:
            return
        try:
            entries = await self._store.retrieve(self._session_key, io_timeout=self._io_timeout)
        except SessionStoreError as exc:
            logger.warning(
                "Session %s could not be loaded; continuing with an empty session: %s",
                self._session_key,
                exc,
            )
            entries = {}
            self._is_available = False
        else:
            self._is_available = True
        self._entries = dict(entries)
        self._loaded_from_store = bool(entries)
        self._state = SessionState.LOADED_CLEAN

    async def try_load(self) -> bool:
        """Load if needed and report whether persisted entries were found."""
        await self.load()
        return self._loaded_from_store

    async def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        validate_key(key)
        await self.load()
        return self._entries.get(key, default)

    async def contains(self, key: str) -> bool:
        validate_key(key)
        await self.load()
        return key in self._entries

    async def keys(self) -> list[str]:
        await self.load()
        return list(self._entries)

    async def items(self) -> dict[str, str]:
        await self.load()
        return dict(self._entries)

    async def length(self) -> int:
        await self.load()
        return len(self._entries)

    async def set(self, key: str, value: Optional[str]) -> None:
        validate_key(key)
        value = normalise_value(value)
        await self._load_for_write()
        self._establish()
        self._entries[key] = value
        self._state = SessionState.LOADED_DIRTY

    async def remove(self, key: str) -> None:
        validate_key(key)
        await self._load_for_write()
        if key in self._entries:
            self._establish()
            del self._entries[key]
            self._state = SessionState.LOADED_DIRTY

    async def clear(self) -> None:
        await self._load_for_write()
        if self._entries:
            self._establish()
            self._entries.clear()
            self._state = SessionState.LOADED_DIRTY

    async def commit(self) -> None:
        """Persist the entry set if it changed since the load; otherwise do nothing."""
        if self._state is not SessionState.LOADED_DIRTY:
            return
        await self._store.commit(
            self._session_key,
            self._entries,
            self._idle_timeout,
            io_timeout=self._io_timeout,
        )
        self._state = SessionState.LOADED_CLEAN
        self._loaded_from_store = bool(self._entries)

    async def refresh(self) -> bool:
        """Slide the stored expiration of an unmodified session."""
        if self._state is not SessionState.LOADED_CLEAN or not self._loaded_from_store:
            return False
        return await self._store.refresh(self._session_key, io_timeout=self._io_timeout)

    def _establish(self) -> None:
        if not self._is_new or self._established:
            return
        if not self._try_establish():
            raise SessionNotEstablishedError(
                "The session cannot be established after the response has started."
            )
        self._established = True

    async def _load_for_write(self) -> None:
        await self.load()
        if not self._is_available and not self._is_new:
            # Committing would replace entries that could not be read.
            raise SessionUnavailableError(
                f"Session {self._session_key} could not be loaded and cannot be modified."
            )
