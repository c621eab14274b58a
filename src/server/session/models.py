from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from .errors import InvalidArgumentError

MAX_SESSION_ID_LENGTH = 449
MAX_KEY_LENGTH = 200

Timeout = Union[int, float, timedelta]


class SessionState(str, Enum):
    UNLOADED = "unloaded"
    LOADED_CLEAN = "loaded_clean"
    LOADED_DIRTY = "loaded_dirty"


@dataclass(slots=True)
class SessionRecord:
    session_id: str
    entries: dict[str, str] = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    sliding_window_seconds: Optional[int] = None
    absolute_expiration: Optional[datetime] = None


def as_timedelta(value: Timeout, *, name: str = "timeout") -> timedelta:
    """Normalise a timeout given in seconds or as a timedelta; must be positive."""
    if isinstance(value, bool) or not isinstance(value, (int, float, timedelta)):
        raise InvalidArgumentError(f"{name} must be a number of seconds or a timedelta")
    window = value if isinstance(value, timedelta) else timedelta(seconds=value)
    if window <= timedelta(0):
        raise InvalidArgumentError(f"{name} must be positive")
    return window


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_expires_at(
    now: datetime,
    sliding_window: timedelta,
    absolute_expiration: Optional[datetime] = None,
) -> datetime:
    """Return ``now + sliding_window``, capped at ``absolute_expiration`` when given."""
    expires_at = now + sliding_window
    if absolute_expiration is not None and expires_at > absolute_expiration:
        return absolute_expiration
    return expires_at


def validate_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id:
        raise InvalidArgumentError("session id must be a non-empty string")
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise InvalidArgumentError(
            f"session id must be {MAX_SESSION_ID_LENGTH} characters or fewer"
        )
    return session_id


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not key:
        raise InvalidArgumentError("session key must be a non-empty string")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidArgumentError(f"session key must be {MAX_KEY_LENGTH} characters or fewer")
    return key


def normalise_value(value: Optional[str]) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidArgumentError("session values must be strings")
    return value
