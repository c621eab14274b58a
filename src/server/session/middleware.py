from __future__ import annotations

import logging

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .errors import SessionStoreError
from .models import SessionState

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR_DETAIL = "Internal Server Error"


class SessionCommitMiddleware(BaseHTTPMiddleware):
    """Commits the request's session once the handler has produced a response.

    Modified sessions are written back; a failed write replaces the response
    with a 500. Unmodified sessions that were loaded only have their
    expiration slid forward.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        session = getattr(request.state, "session", None)
        if session is None:
            return response

        if session.state is SessionState.LOADED_DIRTY:
            try:
                await session.commit()
            except SessionStoreError:
                logger.exception("Failed to commit session %s", session.id)
                return JSONResponse(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    content={"detail": INTERNAL_SERVER_ERROR_DETAIL},
                )
        elif session.is_available:
            try:
                await session.refresh()
            except SessionStoreError as exc:
                logger.warning("Failed to refresh expiration of session %s: %s", session.id, exc)
        return response
