"""Per-user playlists of book ids.

Each mutation persists only the playlist it touched; deletions issue a
remote delete for that playlist document.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any
from uuid import uuid4

from hbooks.errors import ValidationError
from hbooks.observable import Observable
from hbooks.services.documents import (
    PLAYLISTS_COLLECTION,
    user_collection_path,
    user_document_path,
)
from hbooks.services.user_store import UserScopedStore, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Playlist:
    id: str
    name: str
    book_ids: tuple[str, ...] = ()
    created_at: int = 0

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "bookIds": list(self.book_ids),
            "createdAt": self.created_at,
            "updatedAt": now_ms(),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> Playlist:
        name = data.get("name")
        raw_ids = data.get("bookIds")
        book_ids: list[str] = []
        if isinstance(raw_ids, list):
            for value in raw_ids:
                if isinstance(value, str) and value and value not in book_ids:
                    book_ids.append(value)
        created_at = data.get("createdAt")
        return cls(
            id=doc_id,
            name=name.strip() if isinstance(name, str) else "",
            book_ids=tuple(book_ids),
            created_at=created_at
            if isinstance(created_at, int) and not isinstance(created_at, bool)
            else 0,
        )


def _clean_name(name: str) -> str:
    sanitized = name.strip()
    if not sanitized:
        raise ValidationError("Playlist name cannot be blank")
    return sanitized


class PlaylistStore(UserScopedStore[list[Playlist]]):
    name = "playlists"

    def __init__(self, **kwargs: Any) -> None:
        self.playlists: Observable[tuple[Playlist, ...]] = Observable(())
        super().__init__(**kwargs)
        self._publish()

    def get(self, playlist_id: str) -> Playlist | None:
        for playlist in self._active_slice():
            if playlist.id == playlist_id:
                return playlist
        return None

    def create(self, name: str, initial_book_id: str | None = None) -> Playlist:
        """Create a playlist; raises `ValidationError` for a blank name."""
        playlist = Playlist(
            id=uuid4().hex,
            name=_clean_name(name),
            book_ids=(initial_book_id,) if initial_book_id else (),
            created_at=now_ms(),
        )
        self._active_slice().append(playlist)
        self._publish()
        self._persist_playlist(playlist)
        logger.debug("Created playlist %s (%s)", playlist.id, playlist.name)
        return playlist

    def rename(self, playlist_id: str, new_name: str) -> bool:
        sanitized = _clean_name(new_name)
        return self._modify(
            playlist_id,
            lambda playlist: replace(playlist, name=sanitized),
        )

    def add_book(self, playlist_id: str, book_id: str) -> bool:
        """Append `book_id`; returns False when it was already present."""
        if not book_id.strip():
            return False
        return self._modify(
            playlist_id,
            lambda playlist: playlist
            if book_id in playlist.book_ids
            else replace(playlist, book_ids=(*playlist.book_ids, book_id)),
        )

    def remove_book(self, playlist_id: str, book_id: str) -> bool:
        return self._modify(
            playlist_id,
            lambda playlist: replace(
                playlist,
                book_ids=tuple(item for item in playlist.book_ids if item != book_id),
            ),
        )

    def delete(self, playlist_id: str) -> bool:
        current = self._active_slice()
        remaining = [playlist for playlist in current if playlist.id != playlist_id]
        if len(remaining) == len(current):
            return False
        self._slices[self.active_user_id] = remaining
        self._publish()

        async def remove(user_id: str) -> None:
            await self._documents.delete(
                user_document_path(user_id, PLAYLISTS_COLLECTION, playlist_id)
            )

        self._persist(f"playlist deletion {playlist_id}", remove)
        return True

    def _modify(self, playlist_id: str, transform: Callable[[Playlist], Playlist]) -> bool:
        current = self._active_slice()
        for index, playlist in enumerate(current):
            if playlist.id != playlist_id:
                continue
            updated = transform(playlist)
            if updated == playlist:
                return False
            current[index] = updated
            self._publish()
            self._persist_playlist(updated)
            return True
        return False

    def _persist_playlist(self, playlist: Playlist) -> None:
        async def write(user_id: str) -> None:
            await self._documents.set(
                user_document_path(user_id, PLAYLISTS_COLLECTION, playlist.id),
                playlist.to_document(),
            )

        self._persist(f"playlist {playlist.id}", write)

    def _empty_slice(self) -> list[Playlist]:
        return []

    async def _fetch(self, user_id: str) -> list[Playlist]:
        docs = await self._documents.list_documents(
            user_collection_path(user_id, PLAYLISTS_COLLECTION)
        )
        loaded = [Playlist.from_document(doc_id, data) for doc_id, data in docs]
        loaded.sort(key=lambda playlist: (playlist.created_at, playlist.id))
        return loaded

    def _publish(self) -> None:
        self.playlists.set(tuple(self._active_slice()))
