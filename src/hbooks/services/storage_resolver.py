"""Storage reference resolution with a process-lifetime cache."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol
from urllib.parse import quote

from hbooks.errors import StorageResolutionError
from hbooks.services.catalog_store import DOWNLOAD_HOST

logger = logging.getLogger(__name__)

STORAGE_REFERENCE_SCHEMES = ("storage://", "gs://")


def is_storage_reference(url: str) -> bool:
    return url.startswith(STORAGE_REFERENCE_SCHEMES)


def split_reference(reference: str) -> tuple[str, str]:
    """Return `(bucket, object_path)` for a storage reference."""
    for scheme in STORAGE_REFERENCE_SCHEMES:
        if reference.startswith(scheme):
            remainder = reference[len(scheme) :]
            bucket, _, path = remainder.partition("/")
            if not bucket or not path:
                break
            return bucket, path
    raise StorageResolutionError(f"'{reference}' is not a storage reference")


class BlobStorage(Protocol):
    """Turns a storage reference into a fetchable https URL."""

    async def download_url(self, reference: str) -> str: ...


class PublicBlobStorage:
    """Builds public download URLs without a network round trip."""

    def __init__(self, *, download_host: str = DOWNLOAD_HOST) -> None:
        self._download_host = download_host.rstrip("/")

    async def download_url(self, reference: str) -> str:
        bucket, path = split_reference(reference)
        return f"{self._download_host}/v0/b/{bucket}/o/{quote(path, safe='')}?alt=media"


class StorageUrlResolver:
    """Resolves storage references once and caches them by raw reference.

    Non-reference URLs pass through untouched. Failed lookups are not
    cached; the cache is never invalidated otherwise.
    """

    def __init__(self, storage: BlobStorage) -> None:
        self._storage = storage
        self._cache: dict[str, str] = {}
        self._pending: dict[str, asyncio.Task[str]] = {}

    def cached(self, reference: str) -> str | None:
        return self._cache.get(reference)

    async def resolve(self, url: str) -> str:
        if not is_storage_reference(url):
            return url
        cached = self._cache.get(url)
        if cached is not None:
            return cached
        task = self._pending.get(url)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch(url))
            self._pending[url] = task
        return await asyncio.shield(task)

    async def _fetch(self, reference: str) -> str:
        try:
            resolved = await self._storage.download_url(reference)
        except StorageResolutionError:
            raise
        except Exception as exc:
            raise StorageResolutionError(
                f"Unable to resolve storage reference '{reference}'"
            ) from exc
        finally:
            self._pending.pop(reference, None)
        self._cache[reference] = resolved
        logger.debug("Resolved %s -> %s", reference, resolved)
        return resolved
