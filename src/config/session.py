from __future__ import annotations

from dataclasses import dataclass

from .loader import get_bool_env, get_int_env, get_str_env

MIN_CLEANUP_INTERVAL_SECONDS = 300


@dataclass(frozen=True, slots=True)
class SessionSettings:
    db_path: str = "sessions.db"
    cookie_name: str = "session_id"
    idle_timeout_seconds: int = 20 * 60
    io_timeout_seconds: int = 60
    cleanup_interval_seconds: int = 30 * 60
    sweeper_enabled: bool = True

    def __post_init__(self) -> None:
        if not self.cookie_name:
            raise ValueError("SESSION_COOKIE_NAME must not be empty")
        if self.idle_timeout_seconds <= 0:
            raise ValueError("SESSION_IDLE_TIMEOUT_SECONDS must be positive")
        if self.io_timeout_seconds <= 0:
            raise ValueError("SESSION_IO_TIMEOUT_SECONDS must be positive")
        if self.cleanup_interval_seconds < MIN_CLEANUP_INTERVAL_SECONDS:
            raise ValueError(
                f"SESSION_CLEANUP_INTERVAL_SECONDS must be at least {MIN_CLEANUP_INTERVAL_SECONDS}"
            )


def load_session_settings() -> SessionSettings:
    """Read session settings from the environment."""
    defaults = SessionSettings()
    return SessionSettings(
        db_path=get_str_env("SESSION_DB_PATH", defaults.db_path),
        cookie_name=get_str_env("SESSION_COOKIE_NAME", defaults.cookie_name),
        idle_timeout_seconds=get_int_env(
            "SESSION_IDLE_TIMEOUT_SECONDS", defaults.idle_timeout_seconds
        ),
        io_timeout_seconds=get_int_env("SESSION_IO_TIMEOUT_SECONDS", defaults.io_timeout_seconds),
        cleanup_interval_seconds=get_int_env(
            "SESSION_CLEANUP_INTERVAL_SECONDS", defaults.cleanup_interval_seconds
        ),
        sweeper_enabled=get_bool_env("SESSION_SWEEPER_ENABLED", defaults.sweeper_enabled),
    )
