from __future__ import annotations


class SessionStoreError(Exception):
    """Base class for session persistence failures."""


class InvalidArgumentError(SessionStoreError, ValueError):
    """Raised before any I/O for an empty or malformed session id, key or value."""


class StoreConnectionError(SessionStoreError, ConnectionError):
    """The backing database could not be reached."""


class TransactionError(SessionStoreError):
    """A commit failed mid-flight and was rolled back."""


class StoreTimeoutError(SessionStoreError, TimeoutError):
    """An operation exceeded its I/O timeout and was rolled back."""


class SessionNotEstablishedError(SessionStoreError):
    """A new session was modified after the response could no longer carry its cookie."""


class SessionUnavailableError(SessionStoreError):
    """A session whose stored entries could not be read was modified."""
