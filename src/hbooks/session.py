"""Composition root: builds the per-user stores and the playback coordinator."""

from __future__ import annotations

import asyncio
import logging
import random
from types import TracebackType

from hbooks.services.auth import AuthSessionObserver, IdentityProvider
from hbooks.services.bookmark_store import BookmarkStore
from hbooks.services.catalog_store import (
    CURRENT_BUCKET_HOST,
    LEGACY_BUCKET_HOST,
    CatalogStore,
)
from hbooks.services.documents import DocumentStore
from hbooks.services.playback_coordinator import AUTO_SAVE_TICKS, PlaybackCoordinator
from hbooks.services.playlist_store import PlaylistStore
from hbooks.services.position_store import PlaybackPositionStore
from hbooks.services.recently_played_store import RecentlyPlayedStore
from hbooks.services.storage_resolver import BlobStorage, StorageUrlResolver
from hbooks.services.transport import Transport
from hbooks.services.user_store import UserScopedStore
from hbooks.utils.async_utils import BackgroundTasks

logger = logging.getLogger(__name__)


class HBooksSession:
    """Explicitly constructed service graph with a start/close lifecycle.

    Stores subscribe to identity changes on construction, so sign-in and
    sign-out flow to every store without further wiring. `close()` tears
    down in reverse order and waits for queued background writes.
    """

    def __init__(
        self,
        *,
        identity: IdentityProvider,
        documents: DocumentStore,
        storage: BlobStorage,
        transport: Transport,
        legacy_bucket_host: str = LEGACY_BUCKET_HOST,
        current_bucket_host: str = CURRENT_BUCKET_HOST,
        tick_interval_s: float = 1.0,
        auto_save_ticks: int = AUTO_SAVE_TICKS,
        initial_speed: float = 1.0,
        shuffle_random: random.Random | None = None,
    ) -> None:
        self.tasks = BackgroundTasks()
        self.documents = documents
        self.auth = AuthSessionObserver(identity)
        self.catalog = CatalogStore(
            documents,
            legacy_bucket_host=legacy_bucket_host,
            current_bucket_host=current_bucket_host,
        )
        self.resolver = StorageUrlResolver(storage)
        self.bookmarks = BookmarkStore(
            session=self.auth, documents=documents, tasks=self.tasks
        )
        self.positions = PlaybackPositionStore(
            session=self.auth, documents=documents, tasks=self.tasks
        )
        self.playlists = PlaylistStore(
            session=self.auth, documents=documents, tasks=self.tasks
        )
        self.recently_played = RecentlyPlayedStore(
            session=self.auth, documents=documents, tasks=self.tasks
        )
        self.coordinator = PlaybackCoordinator(
            transport=transport,
            catalog=self.catalog,
            resolver=self.resolver,
            positions=self.positions,
            recently_played=self.recently_played,
            playlists=self.playlists,
            tick_interval_s=tick_interval_s,
            auto_save_ticks=auto_save_ticks,
            shuffle_random=shuffle_random,
            initial_speed=initial_speed,
        )
        self._started = False

    @property
    def stores(self) -> tuple[UserScopedStore, ...]:
        return (self.bookmarks, self.positions, self.playlists, self.recently_played)

    async def start(self) -> None:
        """Load the active user's data, then start playback services."""
        if self._started:
            return
        await asyncio.gather(*(store.reload() for store in self.stores))
        await self.coordinator.start()
        self._started = True
        logger.info("Session started for %s", self.auth.current_identity())

    async def close(self) -> None:
        if not self._started:
            await self.tasks.drain()
            return
        await self.coordinator.shutdown()
        for store in reversed(self.stores):
            store.close()
        await self.tasks.drain()
        self._started = False
        logger.info("Session closed")

    async def __aenter__(self) -> HBooksSession:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
