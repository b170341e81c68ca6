"""Tests for the bookmark store."""

from __future__ import annotations

import asyncio
import logging

from hbooks.services.auth import AuthSessionObserver, InMemoryIdentityProvider
from hbooks.services.bookmark_store import BookmarkStore, default_label
from hbooks.services.documents import InMemoryDocumentStore
from hbooks.utils.async_utils import BackgroundTasks


def _run(coro):
    return asyncio.run(coro)


def _store(documents: InMemoryDocumentStore | None = None):
    provider = InMemoryIdentityProvider()
    provider.add_account("a@example.com", "secret1", uid="user-a")
    tasks = BackgroundTasks()
    store = BookmarkStore(
        session=AuthSessionObserver(provider),
        documents=documents or InMemoryDocumentStore(),
        tasks=tasks,
    )
    return provider, store, tasks


def test_bookmarks_stay_sorted_by_position() -> None:
    _provider, store, _tasks = _store()
    for position in [5000, 1000, 3000]:
        store.add("book001", position)

    positions = [bookmark.position_ms for bookmark in store.bookmarks_for_book("book001")]
    assert positions == [1000, 3000, 5000]
    assert [b.position_ms for b in store.bookmarks.value["book001"]] == positions


def test_invalid_bookmarks_are_rejected() -> None:
    _provider, store, _tasks = _store()
    assert store.add("book001", -1) is None
    assert store.add("  ", 1000) is None
    assert store.bookmarks.value == {}


def test_default_and_custom_labels() -> None:
    _provider, store, _tasks = _store()
    default = store.add("book001", 65_000)
    custom = store.add("book001", 3_725_000, label="Chapter 3")

    assert default is not None and default.label == "Bookmark at 1:05"
    assert custom is not None and custom.label == "Chapter 3"
    assert default_label(3_725_000) == "Bookmark at 1:02:05"


def test_delete_by_id() -> None:
    _provider, store, _tasks = _store()
    first = store.add("book001", 1000)
    second = store.add("book001", 2000)
    assert first is not None and second is not None

    assert store.delete(first)
    assert not store.delete(first)
    assert store.bookmarks_for_book("book001") == [second]


def test_persist_and_delete_remote_documents() -> None:
    documents = InMemoryDocumentStore()
    provider, store, tasks = _store(documents)

    async def run() -> str:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()
        kept = store.add("book001", 1000, "Keep")
        dropped = store.add("book002", 2000)
        await tasks.drain()
        assert kept is not None and dropped is not None
        store.delete(dropped)
        await tasks.drain()
        return kept.id

    kept_id = _run(run())
    snapshot = documents.snapshot()
    assert list(snapshot) == [f"users/user-a/bookmarks/{kept_id}"]
    assert snapshot[f"users/user-a/bookmarks/{kept_id}"]["label"] == "Keep"


def test_set_current_book_loads_remote_bookmarks() -> None:
    documents = InMemoryDocumentStore(
        {
            "users/user-a/bookmarks/m2": {"bookId": "book001", "positionMs": 9000},
            "users/user-a/bookmarks/m1": {"bookId": "book001", "positionMs": 100},
            "users/user-a/bookmarks/m3": {"bookId": "book002", "positionMs": 50},
            "users/user-a/bookmarks/bad": {"bookId": "book001", "positionMs": -4},
        }
    )
    provider, store, tasks = _store(documents)

    async def run() -> None:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()
        await store.set_current_book("book001")
        assert store.current_book_id == "book001"
        assert [b.id for b in store.current_book_bookmarks.value] == ["m1", "m2"]

        store.add("book001", 500)
        await tasks.drain()

    _run(run())
    assert [b.position_ms for b in store.current_book_bookmarks.value] == [
        100,
        500,
        9000,
    ]
    assert len(documents.snapshot()) == 5


def test_set_current_book_keeps_unsynced_local_bookmarks() -> None:
    documents = InMemoryDocumentStore(
        {"users/user-a/bookmarks/m1": {"bookId": "book001", "positionMs": 100}}
    )
    provider, store, tasks = _store(documents)

    async def run() -> tuple[int, int]:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()
        local = store.add("book001", 5000)
        assert local is not None
        await store.set_current_book("book001")
        before_sync = len(store.bookmarks_for_book("book001"))
        await tasks.drain()
        await store.set_current_book("book001")
        return before_sync, len(store.bookmarks_for_book("book001"))

    assert _run(run()) == (2, 2)
    assert [b.position_ms for b in store.current_book_bookmarks.value] == [100, 5000]


def test_add_outside_event_loop_keeps_local_bookmark(caplog) -> None:
    provider, store, _tasks = _store()
    _run(provider.sign_in("a@example.com", "secret1"))

    with caplog.at_level(logging.WARNING, logger="hbooks.utils.async_utils"):
        bookmark = store.add("book001", 1500)

    assert bookmark is not None
    assert store.bookmarks_for_book("book001") == [bookmark]
    assert any(
        "No running event loop" in record.getMessage() for record in caplog.records
    )


def test_anonymous_bookmarks_never_touch_remote() -> None:
    documents = InMemoryDocumentStore()
    _provider, store, tasks = _store(documents)

    async def run() -> None:
        await store.set_current_book("book001")
        store.add("book001", 1000)
        assert tasks.pending == 0

    _run(run())
    assert documents.snapshot() == {}
    assert len(store.current_book_bookmarks.value) == 1
