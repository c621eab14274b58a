# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config.loader import get_str_env
from src.server.session.dependencies import (
    get_session_settings,
    initialise_session_store,
    set_session_store,
)
from src.server.session.middleware import SessionCommitMiddleware
from src.server.session.router import router as session_router
from src.server.session.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_session_settings()
    session_store = initialise_session_store()
    await session_store.init()
    set_session_store(session_store)

    sweeper = None
    if settings.sweeper_enabled:
        sweeper = ExpirationSweeper(session_store, settings.cleanup_interval_seconds)
        sweeper.start()
    app.state.session_sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        await session_store.close()


app = FastAPI(
    title="Session Store API",
    description="Server-side session store with sliding expiration",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins_str = get_str_env("ALLOWED_ORIGINS", "http://localhost:3000")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",")]

logger.info(f"Allowed origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.add_middleware(SessionCommitMiddleware)
app.include_router(session_router)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
