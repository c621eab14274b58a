from __future__ import annotations

import asyncio
import logging
import math
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, TypeVar

from .errors import (
    InvalidArgumentError,
    SessionStoreError,
    StoreConnectionError,
    StoreTimeoutError,
    TransactionError,
)
from .models import (
    SessionRecord,
    Timeout,
    as_timedelta,
    as_utc,
    compute_expires_at,
    normalise_value,
    validate_key,
    validate_session_id,
)
from .session import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ENTRIES_DDL = """
CREATE TABLE IF NOT EXISTS session_entries (
    session_id TEXT NOT NULL CHECK (length(session_id) <= 449),
    session_key TEXT NOT NULL CHECK (length(session_key) <= 200),
    session_value TEXT,
    expires_at_time TEXT NOT NULL,
    sliding_expiration_in_seconds INTEGER,
    absolute_expiration TEXT,
    PRIMARY KEY (session_id, session_key)
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_session_entries_expires ON session_entries(expires_at_time);",
]

# Number of SQLite VM instructions between deadline checks.
_PROGRESS_STEPS = 1000

_TIMEOUT_MARKERS = ("interrupted", "locked", "busy")


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA journal_mode = WAL;")


@contextmanager
def _transaction(connection: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the block inside ``BEGIN IMMEDIATE``; roll back on any failure."""
    connection.execute("BEGIN IMMEDIATE")
    try:
        yield connection
        connection.execute("COMMIT")
    except BaseException:
        # ROLLBACK must not be cut short by an expired deadline.
        connection.set_progress_handler(None, 0)
        if connection.in_transaction:
            connection.execute("ROLLBACK")
        raise


class SQLiteSessionStore:
    """SQLite-backed store for per-session key/value entries with sliding and absolute expiry.

    Every session is persisted as one row per key. All rows of a session share
    the same expiration, which each commit recomputes. Blocking driver calls
    run in a worker thread so the event loop keeps serving other requests.
    """

    def __init__(
        self,
        db_path: str,
        *,
        io_timeout: Timeout = 60,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        path = Path(db_path)
        if not path.is_absolute():
            path = Path.cwd() / path
        if path.suffix != ".db":
            path = path.with_suffix(".db")
        self._db_path = str(path)
        self._io_timeout = as_timedelta(io_timeout, name="io_timeout")
        self._clock = clock or _utc_now

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def io_timeout(self) -> timedelta:
        return self._io_timeout

    def now(self) -> datetime:
        return as_utc(self._clock())

    async def init(self) -> None:
        """Initialise database schema."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init(connection: sqlite3.Connection) -> None:
            connection.execute(_ENTRIES_DDL)
            for statement in _CREATE_INDEXES:
                connection.execute(statement)

        await self._run("init", None, _init)
        logger.info("Session database initialised at %s", self._db_path)

    async def close(self) -> None:  # pragma: no cover - connections are per operation
        return None

    def create(
        self,
        session_key: str,
        idle_timeout: Timeout,
        io_timeout: Timeout,
        try_establish: Callable[[], bool],
        is_new: bool,
    ) -> Session:
        """Build a request-scoped session handle. Storage is not touched."""
        validate_session_id(session_key)
        return Session(
            self,
            session_key,
            idle_timeout=idle_timeout,
            io_timeout=io_timeout,
            try_establish=try_establish,
            is_new=is_new,
        )

    async def retrieve(
        self, session_id: str, *, io_timeout: Optional[Timeout] = None
    ) -> dict[str, str]:
        """Return the live entries of a session, or an empty mapping."""
        validate_session_id(session_id)
        now = _format_ts(self.now())

        def _retrieve(connection: sqlite3.Connection) -> dict[str, str]:
            rows = connection.execute(
                "SELECT session_key, session_value FROM session_entries"
                " WHERE session_id = ? AND expires_at_time > ?",
                (session_id, now),
            ).fetchall()
            return {row["session_key"]: row["session_value"] or "" for row in rows}

        entries = await self._run("retrieve", session_id, _retrieve, io_timeout)
        logger.debug("Retrieved %d entries for session %s", len(entries), session_id)
        return entries

    async def get_record(
        self, session_id: str, *, io_timeout: Optional[Timeout] = None
    ) -> Optional[SessionRecord]:
        """Return the live record of a session including expiration metadata."""
        validate_session_id(session_id)
        now = _format_ts(self.now())

        def _get(connection: sqlite3.Connection) -> list[sqlite3.Row]:
            return connection.execute(
                "SELECT session_key, session_value, expires_at_time,"
                " sliding_expiration_in_seconds, absolute_expiration"
                " FROM session_entries WHERE session_id = ? AND expires_at_time > ?",
                (session_id, now),
            ).fetchall()

        rows = await self._run("get_record", session_id, _get, io_timeout)
        if not rows:
            return None
        first = rows[0]
        return SessionRecord(
            session_id=session_id,
            entries={row["session_key"]: row["session_value"] or "" for row in rows},
            expires_at=_parse_ts(first["expires_at_time"]),
            sliding_window_seconds=first["sliding_expiration_in_seconds"],
            absolute_expiration=(
                _parse_ts(first["absolute_expiration"]) if first["absolute_expiration"] else None
            ),
        )

    async def commit(
        self,
        session_id: str,
        entries: Mapping[str, Optional[str]],
        timeout: Timeout,
        *,
        absolute_expiration: Optional[datetime] = None,
        io_timeout: Optional[Timeout] = None,
    ) -> datetime:
        """Atomically replace every row of ``session_id`` with ``entries``.

        The new expiration is ``now + timeout``, capped at ``absolute_expiration``.
        When no absolute expiration is given, the one stored on the live session
        (if any) is kept. Existing rows are deleted and the new ones inserted
        inside a single transaction; on failure the previous row set is left
        untouched. Returns the expiration written.
        """
        validate_session_id(session_id)
        # The sliding window is persisted in whole seconds; refresh reuses it.
        sliding_seconds = math.ceil(as_timedelta(timeout).total_seconds())
        window = timedelta(seconds=sliding_seconds)
        rows = [(validate_key(key), normalise_value(value)) for key, value in entries.items()]
        now = self.now()
        now_str = _format_ts(now)
        absolute = as_utc(absolute_expiration) if absolute_expiration is not None else None
        if absolute is not None and absolute <= now:
            raise InvalidArgumentError("absolute expiration must be in the future")

        def _commit(connection: sqlite3.Connection) -> datetime:
            with _transaction(connection):
                effective_absolute = absolute
                if effective_absolute is None:
                    row = connection.execute(
                        "SELECT absolute_expiration FROM session_entries"
                        " WHERE session_id = ? AND expires_at_time > ?"
                        " AND absolute_expiration IS NOT NULL LIMIT 1",
                        (session_id, now_str),
                    ).fetchone()
                    if row is not None:
                        effective_absolute = _parse_ts(row["absolute_expiration"])

                expires_at = compute_expires_at(now, window, effective_absolute)
                expires_str = _format_ts(expires_at)
                absolute_str = (
                    _format_ts(effective_absolute) if effective_absolute is not None else None
                )
                connection.execute(
                    "DELETE FROM session_entries WHERE session_id = ?",
                    (session_id,),
                )
                connection.executemany(
                    "INSERT INTO session_entries (session_id, session_key, session_value,"
                    " expires_at_time, sliding_expiration_in_seconds, absolute_expiration)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    [
                        (session_id, key, value, expires_str, sliding_seconds, absolute_str)
                        for key, value in rows
                    ],
                )
                return expires_at

        expires_at = await self._run("commit", session_id, _commit, io_timeout)
        logger.debug(
            "Committed %d entries for session %s (expires %s)", len(rows), session_id, expires_at
        )
        return expires_at

    async def refresh(self, session_id: str, *, io_timeout: Optional[Timeout] = None) -> bool:
        """Slide the expiration of a live session forward without rewriting its entries."""
        validate_session_id(session_id)
        now = self.now()
        now_str = _format_ts(now)

        def _refresh(connection: sqlite3.Connection) -> bool:
            with _transaction(connection):
                row = connection.execute(
                    "SELECT sliding_expiration_in_seconds, absolute_expiration FROM session_entries"
                    " WHERE session_id = ? AND expires_at_time > ? LIMIT 1",
                    (session_id, now_str),
                ).fetchone()
                if row is None:
                    return False
                sliding = row["sliding_expiration_in_seconds"]
                if not sliding:
                    return True
                absolute = (
                    _parse_ts(row["absolute_expiration"]) if row["absolute_expiration"] else None
                )
                expires_at = compute_expires_at(now, timedelta(seconds=sliding), absolute)
                connection.execute(
                    "UPDATE session_entries SET expires_at_time = ? WHERE session_id = ?",
                    (_format_ts(expires_at), session_id),
                )
                return True

        return await self._run("refresh", session_id, _refresh, io_timeout)

    async def remove(self, session_id: str, *, io_timeout: Optional[Timeout] = None) -> None:
        """Delete every row of a session. Removing an absent session is not an error."""
        validate_session_id(session_id)

        def _remove(connection: sqlite3.Connection) -> None:
            connection.execute("DELETE FROM session_entries WHERE session_id = ?", (session_id,))

        await self._run("remove", session_id, _remove, io_timeout)
        logger.debug("Removed session %s", session_id)

    async def cleanup_expired(self, *, io_timeout: Optional[Timeout] = None) -> int:
        """Delete every row whose expiration has passed and return how many were removed."""
        now = _format_ts(self.now())

        def _cleanup(connection: sqlite3.Connection) -> int:
            cursor = connection.execute(
                "DELETE FROM session_entries WHERE expires_at_time <= ?",
                (now,),
            )
            return cursor.rowcount

        removed = await self._run("cleanup_expired", None, _cleanup, io_timeout)
        logger.debug("Removed %d expired session entries", removed)
        return removed

    async def _run(
        self,
        operation: str,
        session_id: Optional[str],
        func: Callable[[sqlite3.Connection], T],
        io_timeout: Optional[Timeout] = None,
    ) -> T:
        timeout = self._io_timeout
        if io_timeout is not None:
            timeout = as_timedelta(io_timeout, name="io_timeout")

        def _call() -> T:
            with self._connection(operation, timeout.total_seconds()) as connection:
                return func(connection)

        try:
            return await asyncio.to_thread(_call)
        except SessionStoreError as exc:
            logger.error("Session store %s failed for session %s: %s", operation, session_id, exc)
            raise

    @contextmanager
    def _connection(self, operation: str, timeout: float) -> Iterator[sqlite3.Connection]:
        try:
            connection = sqlite3.connect(self._db_path, timeout=timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise StoreConnectionError(
                f"Unable to open session database {self._db_path}: {exc}"
            ) from exc

        deadline = time.monotonic() + timeout
        connection.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)
        connection.row_factory = sqlite3.Row
        try:
            _ensure_pragmas(connection)
            yield connection
        except sqlite3.Error as exc:
            raise _translate_error(operation, exc, timeout) from exc
        finally:
            connection.close()


def _translate_error(operation: str, exc: sqlite3.Error, timeout: float) -> SessionStoreError:
    message = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError) and any(
        marker in message for marker in _TIMEOUT_MARKERS
    ):
        return StoreTimeoutError(f"Session {operation} exceeded {timeout:g}s: {exc}")
    if operation in {"commit", "refresh"}:
        return TransactionError(f"Session {operation} rolled back: {exc}")
    if isinstance(exc, sqlite3.OperationalError):
        return StoreConnectionError(f"Session {operation} failed: {exc}")
    return SessionStoreError(f"Session {operation} failed: {exc}")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: datetime) -> str:
    # Fixed width so that text comparison in SQL matches chronological order.
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_ts(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1]
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
