"""Tests for the playback position store."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from hbooks.services.auth import AuthSessionObserver, InMemoryIdentityProvider
from hbooks.services.documents import InMemoryDocumentStore
from hbooks.services.position_store import PlaybackPosition, PlaybackPositionStore
from hbooks.utils.async_utils import BackgroundTasks


def _run(coro):
    return asyncio.run(coro)


class WriteFailingDocuments(InMemoryDocumentStore):
    async def set(self, path: str, data: Any) -> None:
        raise ConnectionError("permission denied")


def _store(documents: InMemoryDocumentStore | None = None):
    provider = InMemoryIdentityProvider()
    provider.add_account("a@example.com", "secret1", uid="user-a")
    tasks = BackgroundTasks()
    store = PlaybackPositionStore(
        session=AuthSessionObserver(provider),
        documents=documents or InMemoryDocumentStore(),
        tasks=tasks,
    )
    return provider, store, tasks


def test_save_replaces_previous_entry() -> None:
    _provider, store, _tasks = _store()
    assert store.save("book001", 5_000, 60_000)
    assert store.save("book001", 7_000, 60_000)

    position = store.get_position("book001")
    assert position is not None
    assert (position.position_ms, position.duration_ms) == (7_000, 60_000)
    assert store.get_position_ms("book001") == 7_000
    assert store.get_position_ms("book002") == 0


def test_invalid_saves_never_clobber_valid_position() -> None:
    _provider, store, _tasks = _store()
    store.save("book001", 5_000, 60_000)

    assert not store.save("book001", 0, 60_000)
    assert not store.save("book001", 5_000, 0)
    assert not store.save("book001", -1, 60_000)
    assert not store.save(" ", 5_000, 60_000)
    assert store.get_position_ms("book001") == 5_000
    assert set(store.positions.value) == {"book001"}


def test_remote_round_trip_through_reload() -> None:
    documents = InMemoryDocumentStore()
    provider, store, tasks = _store(documents)

    async def run() -> None:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()
        store.save("book001", 42_000, 600_000)
        await tasks.drain()

    _run(run())
    saved = documents.snapshot()["users/user-a/playbackPositions/book001"]
    assert saved["bookId"] == "book001"
    assert saved["positionMs"] == 42_000
    assert saved["durationMs"] == 600_000

    other_provider, fresh, fresh_tasks = _store(documents)

    async def reload() -> None:
        await other_provider.sign_in("a@example.com", "secret1")
        await fresh_tasks.drain()

    _run(reload())
    assert fresh.get_position_ms("book001") == 42_000


def test_malformed_remote_positions_are_skipped(caplog) -> None:
    documents = InMemoryDocumentStore(
        {
            "users/user-a/playbackPositions/good": {"positionMs": 10, "durationMs": 20},
            "users/user-a/playbackPositions/bad": {"positionMs": "ten"},
        }
    )
    provider, store, tasks = _store(documents)

    async def run() -> None:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()

    with caplog.at_level(logging.WARNING, logger="hbooks.services.position_store"):
        _run(run())
    assert list(store.positions.value) == ["good"]
    assert isinstance(store.positions.value["good"], PlaybackPosition)
    assert any("bad" in record.getMessage() for record in caplog.records)


def test_remote_write_failure_keeps_local_state(caplog) -> None:
    provider, store, tasks = _store(WriteFailingDocuments())

    async def run() -> None:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()
        store.save("book001", 5_000, 60_000)
        await tasks.drain()

    with caplog.at_level(logging.WARNING, logger="hbooks.services.user_store"):
        _run(run())
    assert store.get_position_ms("book001") == 5_000
    assert any(
        "Failed to persist" in record.getMessage() for record in caplog.records
    )
