from datetime import datetime, timedelta, timezone

import pytest

from src.server.session.errors import (
    InvalidArgumentError,
    SessionNotEstablishedError,
    SessionUnavailableError,
    StoreConnectionError,
    TransactionError,
)
from src.server.session.models import SessionState
from src.server.session.store import SQLiteSessionStore

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _open(store, session_id="abc", *, is_new=False, establish=lambda: True):
    return store.create(session_id, 30, 5, establish, is_new)


@pytest.mark.asyncio
async def test_session_loads_lazily_on_first_read(store):
    await store.commit("abc", {"user": "alice"}, 30)
    session = _open(store)
    assert session.state is SessionState.UNLOADED

    assert await session.get("user") == "alice"
    assert session.state is SessionState.LOADED_CLEAN
    assert session.is_available is True


@pytest.mark.asyncio
async def test_try_load_reports_persisted_entries(store):
    await store.commit("abc", {"user": "alice"}, 30)

    assert await _open(store).try_load() is True
    assert await _open(store, "other").try_load() is False


@pytest.mark.asyncio
async def test_mutations_stay_in_memory_until_commit(store):
    session = _open(store)
    await session.set("user", "alice")
    assert session.state is SessionState.LOADED_DIRTY
    assert await store.retrieve("abc") == {}

    await session.commit()
    assert session.state is SessionState.LOADED_CLEAN
    assert await store.retrieve("abc") == {"user": "alice"}


@pytest.mark.asyncio
async def test_commit_writes_full_entry_set(store):
    await store.commit("abc", {"user": "alice", "theme": "dark"}, 30)
    session = _open(store)
    await session.set("lang", "en")
    await session.remove("theme")
    await session.commit()

    assert await store.retrieve("abc") == {"user": "alice", "lang": "en"}


@pytest.mark.asyncio
async def test_commit_is_noop_when_clean_or_unloaded(store, monkeypatch):
    calls = []

    async def _record_commit(*args, **kwargs):
        calls.append(args)

    monkeypatch.setattr(store, "commit", _record_commit)

    unloaded = _open(store)
    await unloaded.commit()

    clean = _open(store)
    await clean.keys()
    await clean.remove("missing")
    await clean.commit()

    assert calls == []
    assert clean.state is SessionState.LOADED_CLEAN


@pytest.mark.asyncio
async def test_clear_removes_everything_on_commit(store):
    await store.commit("abc", {"a": "1", "b": "2"}, 30)
    session = _open(store)
    await session.clear()
    assert await session.length() == 0
    await session.commit()

    assert await store.retrieve("abc") == {}


@pytest.mark.asyncio
async def test_other_handles_do_not_see_uncommitted_changes(store):
    first = _open(store)
    second = _open(store)
    await first.set("user", "alice")

    assert await second.items() == {}


@pytest.mark.asyncio
async def test_concurrent_commits_last_writer_wins(store):
    first = _open(store)
    second = _open(store)
    await first.set("a", "1")
    await second.set("b", "2")

    await first.commit()
    await second.commit()

    assert await store.retrieve("abc") == {"b": "2"}


@pytest.mark.asyncio
async def test_new_session_is_established_on_first_mutation(store):
    established = []

    def _establish():
        established.append(True)
        return True

    session = _open(store, is_new=True, establish=_establish)
    await session.get("user")
    assert established == []

    await session.set("user", "alice")
    await session.set("theme", "dark")
    assert established == [True]


@pytest.mark.asyncio
async def test_mutation_fails_when_session_cannot_be_established(store):
    session = _open(store, is_new=True, establish=lambda: False)

    with pytest.raises(SessionNotEstablishedError):
        await session.set("user", "alice")
    assert session.state is SessionState.LOADED_CLEAN


@pytest.mark.asyncio
async def test_invalid_keys_are_rejected(store):
    session = _open(store)

    with pytest.raises(InvalidArgumentError):
        await session.set("", "x")
    with pytest.raises(InvalidArgumentError):
        await session.get("k" * 201)


@pytest.mark.asyncio
async def test_unreachable_store_yields_empty_unavailable_session(tmp_path):
    store = SQLiteSessionStore(str(tmp_path / "missing" / "sessions.db"))
    session = store.create("abc", 30, 5, lambda: True, False)

    assert await session.try_load() is False
    assert await session.items() == {}
    assert session.is_available is False


@pytest.mark.asyncio
async def test_failed_commit_propagates_and_keeps_session_dirty(store, monkeypatch):
    async def _failing_commit(*args, **kwargs):
        raise TransactionError("rolled back")

    session = _open(store)
    await session.set("user", "alice")
    monkeypatch.setattr(store, "commit", _failing_commit)

    with pytest.raises(TransactionError):
        await session.commit()
    assert session.state is SessionState.LOADED_DIRTY


@pytest.mark.asyncio
async def test_refresh_slides_expiration_of_clean_session(store, clock):
    await store.commit("abc", {"user": "alice"}, 30)
    clock.advance(20)

    session = _open(store)
    assert await session.refresh() is False
    await session.load()
    assert await session.refresh() is True

    clock.advance(20)
    assert await store.retrieve("abc") == {"user": "alice"}


@pytest.mark.asyncio
async def test_session_commit_respects_stored_absolute_expiration(store, clock):
    absolute = T0 + timedelta(seconds=45)
    await store.commit("abc", {"user": "alice"}, 30, absolute_expiration=absolute)
    clock.advance(20)

    session = _open(store)
    await session.set("theme", "dark")
    await session.commit()

    record = await store.get_record("abc")
    assert record.entries == {"user": "alice", "theme": "dark"}
    assert record.absolute_expiration == absolute
    assert record.expires_at == absolute


@pytest.mark.asyncio
async def test_session_with_failed_read_refuses_writes(store, monkeypatch):
    await store.commit("abc", {"user": "alice", "cart": "[1]"}, 30)
    original_retrieve = store.retrieve

    async def _unreachable(*args, **kwargs):
        monkeypatch.setattr(store, "retrieve", original_retrieve)
        raise StoreConnectionError("database unavailable")

    monkeypatch.setattr(store, "retrieve", _unreachable)

    session = _open(store)
    with pytest.raises(SessionUnavailableError):
        await session.set("theme", "dark")
    await session.commit()

    assert await store.retrieve("abc") == {"user": "alice", "cart": "[1]"}


@pytest.mark.asyncio
async def test_new_session_with_failed_read_can_still_be_written(store, monkeypatch):
    async def _unreachable(*args, **kwargs):
        raise StoreConnectionError("database unavailable")

    monkeypatch.setattr(store, "retrieve", _unreachable)

    session = _open(store, "fresh", is_new=True)
    await session.set("user", "alice")

    assert session.state is SessionState.LOADED_DIRTY


@pytest.mark.asyncio
async def test_no_op_mutations_do_not_establish_new_session(store):
    established = []

    def _establish():
        established.append(True)
        return True

    session = _open(store, is_new=True, establish=_establish)
    await session.remove("missing")
    await session.clear()

    assert established == []
    assert session.state is SessionState.LOADED_CLEAN
