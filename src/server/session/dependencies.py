from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from fastapi import Depends, Request, Response

from src.config.session import SessionSettings, load_session_settings

from .models import MAX_SESSION_ID_LENGTH
from .session import Session
from .store import SQLiteSessionStore

logger = logging.getLogger(__name__)

_SESSION_STORE: Optional[SQLiteSessionStore] = None
_SESSION_SETTINGS: Optional[SessionSettings] = None


def get_session_settings() -> SessionSettings:
    global _SESSION_SETTINGS
    if _SESSION_SETTINGS is None:
        _SESSION_SETTINGS = load_session_settings()
    return _SESSION_SETTINGS


def set_session_settings(settings: Optional[SessionSettings]) -> None:
    global _SESSION_SETTINGS
    _SESSION_SETTINGS = settings


def initialise_session_store() -> SQLiteSessionStore:
    """Create session store instance using configuration."""
    global _SESSION_STORE
    if _SESSION_STORE is not None:
        return _SESSION_STORE

    settings = get_session_settings()
    store = SQLiteSessionStore(settings.db_path, io_timeout=settings.io_timeout_seconds)
    _SESSION_STORE = store
    logger.info("Initialised session store with DB path %s", store.db_path)
    return store


def set_session_store(store: Optional[SQLiteSessionStore]) -> None:
    global _SESSION_STORE
    _SESSION_STORE = store


def get_session_store(_: SQLiteSessionStore = Depends(initialise_session_store)) -> SQLiteSessionStore:
    if _SESSION_STORE is None:
        raise RuntimeError("Session store has not been initialised")
    return _SESSION_STORE


def get_request_session(
    request: Request,
    response: Response,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> Session:
    """Resolve the session for this request from its cookie, minting a new id if absent."""
    settings = get_session_settings()
    cookie_value = request.cookies.get(settings.cookie_name)
    if cookie_value and len(cookie_value) > MAX_SESSION_ID_LENGTH:
        logger.debug("Ignoring over-long session cookie")
        cookie_value = None
    is_new = not cookie_value
    session_key = cookie_value or uuid4().hex

    def _try_establish() -> bool:
        response.set_cookie(
            settings.cookie_name,
            session_key,
            httponly=True,
            samesite="lax",
            path="/",
        )
        return True

    session = store.create(
        session_key,
        settings.idle_timeout_seconds,
        settings.io_timeout_seconds,
        _try_establish,
        is_new,
    )
    # Committed by SessionCommitMiddleware once the handler returns.
    request.state.session = session
    return session
