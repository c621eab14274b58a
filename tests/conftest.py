from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from src.server.session.store import SQLiteSessionStore

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path, clock) -> SQLiteSessionStore:
    session_store = SQLiteSessionStore(str(tmp_path / "sessions.db"), io_timeout=5, clock=clock)
    await session_store.init()
    return session_store
