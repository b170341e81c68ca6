"""Tests for the recently played store."""

from __future__ import annotations

import asyncio

from hbooks.services.auth import AuthSessionObserver, InMemoryIdentityProvider
from hbooks.services.documents import InMemoryDocumentStore
from hbooks.services.recently_played_store import RECENT_LIMIT, RecentlyPlayedStore
from hbooks.utils.async_utils import BackgroundTasks


def _run(coro):
    return asyncio.run(coro)


def _store(
    documents: InMemoryDocumentStore | None = None,
) -> tuple[InMemoryIdentityProvider, RecentlyPlayedStore, BackgroundTasks]:
    provider = InMemoryIdentityProvider()
    provider.add_account("a@example.com", "secret1", uid="user-a")
    tasks = BackgroundTasks()
    store = RecentlyPlayedStore(
        session=AuthSessionObserver(provider),
        documents=documents or InMemoryDocumentStore(),
        tasks=tasks,
    )
    return provider, store, tasks


def test_mark_played_orders_dedups_and_caps() -> None:
    _provider, store, _tasks = _store()
    for book_id in ["b1", "b2", "b3", "b4", "b5", "b6"]:
        store.mark_played(book_id)
    assert store.book_ids == ["b6", "b5", "b4", "b3", "b2"]

    store.mark_played("b2")
    assert store.book_ids == ["b2", "b6", "b5", "b4", "b3"]
    assert len(store.recently_played.value) == RECENT_LIMIT


def test_blank_ids_are_ignored() -> None:
    _provider, store, _tasks = _store()
    store.mark_played("b1")
    store.mark_played("  ")
    assert store.recently_played.value == ("b1",)


def test_persists_for_signed_in_user() -> None:
    documents = InMemoryDocumentStore()
    provider, store, tasks = _store(documents)

    async def run() -> None:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()
        store.mark_played("b1")
        store.mark_played("b2")
        await tasks.drain()

    _run(run())
    saved = documents.snapshot()["users/user-a/userData/recentlyPlayed"]
    assert saved["bookIds"] == ["b2", "b1"]
    assert isinstance(saved["updatedAt"], int)


def test_reload_reads_remote_list() -> None:
    documents = InMemoryDocumentStore(
        {
            "users/user-a/userData/recentlyPlayed": {
                "bookIds": ["x", "x", "y", 3, "z", "w", "v", "u"],
            }
        }
    )
    provider, store, tasks = _store(documents)

    async def run() -> None:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()

    _run(run())
    assert store.book_ids == ["x", "y", "z", "w", "v"]
