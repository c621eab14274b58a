from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .dependencies import get_request_session, get_session_settings, get_session_store
from .errors import (
    InvalidArgumentError,
    SessionNotEstablishedError,
    SessionStoreError,
    SessionUnavailableError,
)
from .middleware import INTERNAL_SERVER_ERROR_DETAIL
from .schemas import DeleteResponse, SessionEntriesResponse, SessionValueRequest
from .session import Session
from .store import SQLiteSessionStore

router = APIRouter(prefix="/api/session", tags=["session"])


@router.get("", response_model=SessionEntriesResponse)
async def get_entries(session: Session = Depends(get_request_session)) -> SessionEntriesResponse:
    return _to_response(session, await session.items())


@router.put("/{key}", response_model=SessionEntriesResponse)
async def set_entry(
    key: str,
    payload: SessionValueRequest,
    session: Session = Depends(get_request_session),
) -> SessionEntriesResponse:
    try:
        await session.set(key, payload.value)
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SessionNotEstablishedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SessionUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _to_response(session, await session.items())


@router.delete("/{key}", response_model=SessionEntriesResponse)
async def remove_entry(
    key: str,
    session: Session = Depends(get_request_session),
) -> SessionEntriesResponse:
    try:
        await session.remove(key)
    except InvalidArgumentError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SessionUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _to_response(session, await session.items())


@router.delete("", response_model=DeleteResponse)
async def invalidate_session(
    response: Response,
    session: Session = Depends(get_request_session),
    store: SQLiteSessionStore = Depends(get_session_store),
) -> DeleteResponse:
    try:
        await store.remove(session.id)
    except SessionStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=INTERNAL_SERVER_ERROR_DETAIL,
        ) from exc
    response.delete_cookie(get_session_settings().cookie_name, path="/")
    return DeleteResponse(success=True)


def _to_response(session: Session, entries: dict[str, str]) -> SessionEntriesResponse:
    return SessionEntriesResponse(
        id=session.id,
        is_new=session.is_new,
        available=session.is_available,
        entries=entries,
    )
