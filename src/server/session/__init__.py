"""Session management package providing SQLite-backed persistence with sliding expiration."""

from .dependencies import get_request_session, get_session_store
from .errors import (
    InvalidArgumentError,
    SessionNotEstablishedError,
    SessionStoreError,
    SessionUnavailableError,
    StoreConnectionError,
    StoreTimeoutError,
    TransactionError,
)
from .models import SessionRecord, SessionState
from .session import Session
from .store import SQLiteSessionStore
from .sweeper import ExpirationSweeper

__all__ = [
    "ExpirationSweeper",
    "InvalidArgumentError",
    "SQLiteSessionStore",
    "Session",
    "SessionNotEstablishedError",
    "SessionRecord",
    "SessionState",
    "SessionStoreError",
    "SessionUnavailableError",
    "StoreConnectionError",
    "StoreTimeoutError",
    "TransactionError",
    "get_request_session",
    "get_session_store",
]
