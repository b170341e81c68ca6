"""Per-user most-recently-played book ids, newest first."""

from __future__ import annotations

from typing import Any

from hbooks.observable import Observable
from hbooks.services.documents import (
    RECENTLY_PLAYED_DOCUMENT,
    USER_DATA_COLLECTION,
    user_document_path,
)
from hbooks.services.user_store import UserScopedStore, now_ms

RECENT_LIMIT = 5


class RecentlyPlayedStore(UserScopedStore[list[str]]):
    name = "recently played"

    def __init__(self, **kwargs: Any) -> None:
        self.recently_played: Observable[tuple[str, ...]] = Observable(())
        super().__init__(**kwargs)
        self._publish()

    @property
    def book_ids(self) -> list[str]:
        return list(self._active_slice())

    def mark_played(self, book_id: str) -> None:
        """Move `book_id` to the front, dropping older duplicates and overflow."""
        if not book_id.strip():
            return
        current = self._active_slice()
        updated = [book_id, *[item for item in current if item != book_id]]
        trimmed = updated[:RECENT_LIMIT]
        self._slices[self.active_user_id] = trimmed
        self._publish()

        async def write(user_id: str) -> None:
            await self._documents.set(
                user_document_path(
                    user_id, USER_DATA_COLLECTION, RECENTLY_PLAYED_DOCUMENT
                ),
                {"bookIds": list(trimmed), "updatedAt": now_ms()},
            )

        self._persist("recently played", write)

    def _empty_slice(self) -> list[str]:
        return []

    async def _fetch(self, user_id: str) -> list[str]:
        doc = await self._documents.get(
            user_document_path(user_id, USER_DATA_COLLECTION, RECENTLY_PLAYED_DOCUMENT)
        )
        if doc is None:
            return []
        book_ids = doc.get("bookIds")
        if not isinstance(book_ids, list):
            return []
        loaded: list[str] = []
        for value in book_ids:
            if isinstance(value, str) and value and value not in loaded:
                loaded.append(value)
        return loaded[:RECENT_LIMIT]

    def _publish(self) -> None:
        self.recently_played.set(tuple(self._active_slice()))
