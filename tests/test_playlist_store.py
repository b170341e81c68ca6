"""Tests for the playlist store."""

from __future__ import annotations

import asyncio

import pytest

from hbooks.errors import ValidationError
from hbooks.services.auth import AuthSessionObserver, InMemoryIdentityProvider
from hbooks.services.documents import InMemoryDocumentStore
from hbooks.services.playlist_store import PlaylistStore
from hbooks.utils.async_utils import BackgroundTasks


def _run(coro):
    return asyncio.run(coro)


def _store(documents: InMemoryDocumentStore | None = None):
    provider = InMemoryIdentityProvider()
    provider.add_account("a@example.com", "secret1", uid="user-a")
    tasks = BackgroundTasks()
    store = PlaylistStore(
        session=AuthSessionObserver(provider),
        documents=documents or InMemoryDocumentStore(),
        tasks=tasks,
    )
    return provider, store, tasks


def test_create_trims_name_and_seeds_book() -> None:
    _provider, store, _tasks = _store()
    playlist = store.create("  My List  ", "book1")

    assert playlist.name == "My List"
    assert playlist.book_ids == ("book1",)
    assert store.playlists.value == (playlist,)


@pytest.mark.parametrize("name", ["", "   "])
def test_blank_names_are_rejected(name: str) -> None:
    _provider, store, _tasks = _store()
    with pytest.raises(ValidationError):
        store.create(name)
    playlist = store.create("Keep")
    with pytest.raises(ValidationError):
        store.rename(playlist.id, name)
    assert store.get(playlist.id) == playlist


def test_add_and_remove_books_are_idempotent() -> None:
    _provider, store, _tasks = _store()
    playlist = store.create("List", "book1")

    assert not store.add_book(playlist.id, "book1")
    assert store.add_book(playlist.id, "book2")
    assert not store.add_book(playlist.id, " ")
    assert store.remove_book(playlist.id, "book1")
    assert not store.remove_book(playlist.id, "book1")
    assert not store.add_book("missing", "book3")

    updated = store.get(playlist.id)
    assert updated is not None and updated.book_ids == ("book2",)


def test_rename_and_delete() -> None:
    _provider, store, _tasks = _store()
    playlist = store.create("Old")

    assert store.rename(playlist.id, " New ")
    assert store.get(playlist.id) is not None
    assert store.get(playlist.id).name == "New"  # type: ignore[union-attr]
    assert store.delete(playlist.id)
    assert not store.delete(playlist.id)
    assert store.playlists.value == ()


def test_mutations_patch_only_the_changed_playlist() -> None:
    documents = InMemoryDocumentStore()
    provider, store, tasks = _store(documents)

    async def run() -> tuple[str, str]:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()
        first = store.create("First", "book1")
        second = store.create("Second")
        await tasks.drain()
        store.add_book(second.id, "book9")
        await tasks.drain()
        return first.id, second.id

    first_id, second_id = _run(run())
    snapshot = documents.snapshot()
    first_doc = snapshot[f"users/user-a/playlists/{first_id}"]
    second_doc = snapshot[f"users/user-a/playlists/{second_id}"]
    assert first_doc["bookIds"] == ["book1"]
    assert second_doc["bookIds"] == ["book9"]
    assert second_doc["name"] == "Second"

    async def delete() -> None:
        store.delete(first_id)
        await tasks.drain()

    _run(delete())
    assert f"users/user-a/playlists/{first_id}" not in documents.snapshot()


def test_reload_orders_by_creation_time() -> None:
    documents = InMemoryDocumentStore(
        {
            "users/user-a/playlists/p-late": {
                "name": "Late",
                "bookIds": ["b1", "b1", "b2"],
                "createdAt": 20,
            },
            "users/user-a/playlists/p-early": {"name": " Early ", "createdAt": 10},
        }
    )
    provider, store, tasks = _store(documents)

    async def run() -> None:
        await provider.sign_in("a@example.com", "secret1")
        await tasks.drain()

    _run(run())
    assert [playlist.name for playlist in store.playlists.value] == ["Early", "Late"]
    assert store.playlists.value[1].book_ids == ("b1", "b2")
