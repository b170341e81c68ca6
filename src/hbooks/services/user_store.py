"""Shared machinery for stores that keep one in-memory slice per user.

A store caches every user's slice it has seen, publishes the active user's
slice through an `Observable`, and follows `AuthSessionObserver` identity
changes. Mutations are applied locally first; remote writes are scheduled on
`BackgroundTasks` and never awaited by the caller. Anonymous identities never
touch the document store.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from hbooks.services.auth import AuthSessionObserver, is_authenticated
from hbooks.services.documents import DocumentStore
from hbooks.utils.async_utils import BackgroundTasks

S = TypeVar("S")

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class UserScopedStore(ABC, Generic[S]):
    """Per-user slice cache with best-effort remote synchronization."""

    name = "user data"

    def __init__(
        self,
        *,
        session: AuthSessionObserver,
        documents: DocumentStore,
        tasks: BackgroundTasks,
    ) -> None:
        self._documents = documents
        self._tasks = tasks
        self._slices: dict[str, S] = {}
        self._active_user_id = session.current_identity()
        self._remove_listener = session.add_listener(self._on_identity_changed)

    @property
    def active_user_id(self) -> str:
        return self._active_user_id

    async def reload(self) -> None:
        """Replace the active user's slice with the remote copy."""
        await self._reload_user(self._active_user_id)

    def close(self) -> None:
        self._remove_listener()

    @abstractmethod
    def _empty_slice(self) -> S: ...

    @abstractmethod
    async def _fetch(self, user_id: str) -> S: ...

    @abstractmethod
    def _publish(self) -> None:
        """Push the active slice into the store's observables."""

    def _on_user_switched(self) -> None:
        """Hook for stores with extra per-user view state."""

    def _slice_for(self, user_id: str) -> S:
        if user_id not in self._slices:
            self._slices[user_id] = self._empty_slice()
        return self._slices[user_id]

    def _active_slice(self) -> S:
        return self._slice_for(self._active_user_id)

    def _on_identity_changed(self, user_id: str) -> None:
        if user_id == self._active_user_id:
            return
        logger.info(
            "%s: active user %s -> %s", self.name, self._active_user_id, user_id
        )
        self._active_user_id = user_id
        self._on_user_switched()
        self._publish()
        if is_authenticated(user_id):
            self._tasks.spawn(
                self._reload_user(user_id),
                description=f"reload {self.name} for {user_id}",
            )

    async def _reload_user(self, user_id: str) -> None:
        if not is_authenticated(user_id):
            return
        try:
            loaded = await self._fetch(user_id)
        except Exception as exc:
            logger.warning(
                "Failed to load %s for user %s: %s", self.name, user_id, exc
            )
            return
        # The identity may have changed while the request was in flight.
        if user_id != self._active_user_id:
            logger.debug("Discarding stale %s reload for user %s", self.name, user_id)
            return
        self._slices[user_id] = loaded
        self._publish()
        logger.debug("Loaded %s for user %s", self.name, user_id)

    def _persist(
        self, description: str, operation: Callable[[str], Awaitable[None]]
    ) -> None:
        """Schedule a remote write for the active user unless anonymous."""
        user_id = self._active_user_id
        if not is_authenticated(user_id):
            return
        self._tasks.spawn(
            self._run_persist(user_id, description, operation),
            description=f"persist {description} for {user_id}",
        )

    async def _run_persist(
        self,
        user_id: str,
        description: str,
        operation: Callable[[str], Awaitable[None]],
    ) -> None:
        try:
            await operation(user_id)
        except Exception as exc:
            logger.warning(
                "Failed to persist %s for user %s: %s", description, user_id, exc
            )
            return
        logger.debug("Persisted %s for user %s", description, user_id)
