"""Per-user last playback position for each book (last write wins)."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from hbooks.observable import Observable
from hbooks.services.documents import (
    PLAYBACK_POSITIONS_COLLECTION,
    user_collection_path,
    user_document_path,
)
from hbooks.services.user_store import UserScopedStore, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaybackPosition:
    book_id: str
    position_ms: int
    duration_ms: int
    updated_at: int

    def to_document(self) -> dict[str, Any]:
        return {
            "bookId": self.book_id,
            "positionMs": self.position_ms,
            "durationMs": self.duration_ms,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_document(
        cls, doc_id: str, data: Mapping[str, Any]
    ) -> PlaybackPosition | None:
        position = _int_or_none(data.get("positionMs"))
        duration = _int_or_none(data.get("durationMs"))
        if position is None or position < 0:
            return None
        book_id = data.get("bookId")
        return cls(
            book_id=book_id if isinstance(book_id, str) and book_id else doc_id,
            position_ms=position,
            duration_ms=max(0, duration or 0),
            updated_at=_int_or_none(data.get("updatedAt")) or 0,
        )


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    return int(value) if isinstance(value, int) else None


class PlaybackPositionStore(UserScopedStore[dict[str, PlaybackPosition]]):
    """Saved resume points keyed by user, then book id."""

    name = "playback positions"

    def __init__(self, **kwargs: Any) -> None:
        self.positions: Observable[dict[str, PlaybackPosition]] = Observable({})
        super().__init__(**kwargs)
        self._publish()

    def get_position(self, book_id: str) -> PlaybackPosition | None:
        return self._active_slice().get(book_id)

    def get_position_ms(self, book_id: str) -> int:
        position = self.get_position(book_id)
        return position.position_ms if position is not None else 0

    def save(self, book_id: str, position_ms: int, duration_ms: int) -> bool:
        """Replace the saved position for `book_id`.

        Rejected without side effects when the book id is blank or when either
        the position or the duration is not strictly positive, so an unknown
        duration or a reset-to-zero sample never clobbers a good resume point.
        """
        if not book_id.strip() or position_ms <= 0 or duration_ms <= 0:
            return False
        position = PlaybackPosition(
            book_id=book_id,
            position_ms=position_ms,
            duration_ms=duration_ms,
            updated_at=now_ms(),
        )
        self._active_slice()[book_id] = position
        self._publish()

        async def write(user_id: str) -> None:
            await self._documents.set(
                user_document_path(user_id, PLAYBACK_POSITIONS_COLLECTION, book_id),
                position.to_document(),
            )

        self._persist(f"position for {book_id}", write)
        return True

    def _empty_slice(self) -> dict[str, PlaybackPosition]:
        return {}

    async def _fetch(self, user_id: str) -> dict[str, PlaybackPosition]:
        docs = await self._documents.list_documents(
            user_collection_path(user_id, PLAYBACK_POSITIONS_COLLECTION)
        )
        loaded: dict[str, PlaybackPosition] = {}
        for doc_id, data in docs:
            position = PlaybackPosition.from_document(doc_id, data)
            if position is None:
                logger.warning("Skipping malformed playback position %s", doc_id)
                continue
            loaded[position.book_id] = position
        return loaded

    def _publish(self) -> None:
        self.positions.set(dict(self._active_slice()))
