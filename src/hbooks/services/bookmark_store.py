"""Per-user bookmarks grouped by book and kept sorted by position."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from hbooks.observable import Observable
from hbooks.services.auth import is_authenticated
from hbooks.services.documents import (
    BOOKMARKS_COLLECTION,
    user_collection_path,
    user_document_path,
)
from hbooks.services.user_store import UserScopedStore, now_ms
from hbooks.utils.time_format import format_time_ms

logger = logging.getLogger(__name__)

BookmarksByBook = dict[str, list["Bookmark"]]


@dataclass(frozen=True)
class Bookmark:
    id: str
    book_id: str
    position_ms: int
    label: str
    created_at: int

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bookId": self.book_id,
            "positionMs": self.position_ms,
            "label": self.label,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> Bookmark | None:
        book_id = data.get("bookId")
        position = data.get("positionMs")
        if not isinstance(book_id, str) or not book_id:
            return None
        if isinstance(position, bool) or not isinstance(position, int) or position < 0:
            return None
        label = data.get("label")
        created_at = data.get("createdAt")
        return cls(
            id=doc_id,
            book_id=book_id,
            position_ms=position,
            label=label if isinstance(label, str) else "",
            created_at=created_at
            if isinstance(created_at, int) and not isinstance(created_at, bool)
            else 0,
        )


def default_label(position_ms: int) -> str:
    return f"Bookmark at {format_time_ms(position_ms)}"


class BookmarkStore(UserScopedStore[BookmarksByBook]):
    """Bookmarks keyed by user, then book id."""

    name = "bookmarks"

    def __init__(self, **kwargs: Any) -> None:
        self.bookmarks: Observable[dict[str, tuple[Bookmark, ...]]] = Observable({})
        self.current_book_bookmarks: Observable[tuple[Bookmark, ...]] = Observable(())
        self._current_book_id: str | None = None
        super().__init__(**kwargs)
        self._publish()

    @property
    def current_book_id(self) -> str | None:
        return self._current_book_id

    def bookmarks_for_book(self, book_id: str) -> list[Bookmark]:
        return list(self._active_slice().get(book_id, []))

    async def set_current_book(self, book_id: str) -> None:
        """Track `book_id` and refresh its bookmarks from the remote tree."""
        self._current_book_id = book_id
        self._publish()
        user_id = self.active_user_id
        if not is_authenticated(user_id):
            return
        try:
            docs = await self._documents.list_documents(
                user_collection_path(user_id, BOOKMARKS_COLLECTION)
            )
        except Exception as exc:
            logger.warning("Failed to load bookmarks for book %s: %s", book_id, exc)
            return
        if user_id != self.active_user_id:
            return
        remote = [bookmark for bookmark in _parse(docs) if bookmark.book_id == book_id]
        remote_ids = {bookmark.id for bookmark in remote}
        # Local entries whose write has not landed yet stay visible.
        pending = [
            bookmark
            for bookmark in self._active_slice().get(book_id, [])
            if bookmark.id not in remote_ids
        ]
        merged = sorted(remote + pending, key=lambda bookmark: bookmark.position_ms)
        self._active_slice()[book_id] = merged
        self._publish()
        logger.debug(
            "Loaded %d bookmarks for book %s (%d pending local)",
            len(remote),
            book_id,
            len(pending),
        )

    def add(self, book_id: str, position_ms: int, label: str = "") -> Bookmark | None:
        """Create a bookmark; `None` for a blank book id or negative position."""
        if not book_id.strip() or position_ms < 0:
            return None
        bookmark = Bookmark(
            id=uuid4().hex,
            book_id=book_id,
            position_ms=position_ms,
            label=label if label.strip() else default_label(position_ms),
            created_at=now_ms(),
        )
        book_bookmarks = self._active_slice().setdefault(book_id, [])
        book_bookmarks.append(bookmark)
        book_bookmarks.sort(key=lambda item: item.position_ms)
        self._publish()

        async def write(user_id: str) -> None:
            await self._documents.set(
                user_document_path(user_id, BOOKMARKS_COLLECTION, bookmark.id),
                bookmark.to_document(),
            )

        self._persist(f"bookmark {bookmark.id}", write)
        return bookmark

    def delete(self, bookmark: Bookmark) -> bool:
        book_bookmarks = self._active_slice().get(bookmark.book_id)
        if not book_bookmarks:
            return False
        remaining = [item for item in book_bookmarks if item.id != bookmark.id]
        if len(remaining) == len(book_bookmarks):
            return False
        self._active_slice()[bookmark.book_id] = remaining
        self._publish()

        async def remove(user_id: str) -> None:
            await self._documents.delete(
                user_document_path(user_id, BOOKMARKS_COLLECTION, bookmark.id)
            )

        self._persist(f"bookmark deletion {bookmark.id}", remove)
        return True

    def _empty_slice(self) -> BookmarksByBook:
        return {}

    async def _fetch(self, user_id: str) -> BookmarksByBook:
        docs = await self._documents.list_documents(
            user_collection_path(user_id, BOOKMARKS_COLLECTION)
        )
        grouped: BookmarksByBook = {}
        for bookmark in _parse(docs):
            grouped.setdefault(bookmark.book_id, []).append(bookmark)
        for items in grouped.values():
            items.sort(key=lambda item: item.position_ms)
        return grouped

    def _publish(self) -> None:
        active = self._active_slice()
        self.bookmarks.set({book_id: tuple(items) for book_id, items in active.items()})
        if self._current_book_id is None:
            self.current_book_bookmarks.set(())
        else:
            self.current_book_bookmarks.set(
                tuple(active.get(self._current_book_id, []))
            )


def _parse(docs: list[tuple[str, dict[str, Any]]]) -> list[Bookmark]:
    parsed = []
    for doc_id, data in docs:
        bookmark = Bookmark.from_document(doc_id, data)
        if bookmark is None:
            logger.warning("Skipping malformed bookmark document %s", doc_id)
            continue
        parsed.append(bookmark)
    return parsed
