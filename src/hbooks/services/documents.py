"""Document store contract plus in-memory and JSON-file implementations.

Paths are slash-separated and alternate collection/document segments, e.g.
`catalog/book001` or `users/u1/bookmarks/<id>`. `list_documents(parent)`
returns the direct child documents of a collection path.

The JSON-file store keeps the whole tree in one file. Public methods are
async; file work is synchronous and dispatched through `run_blocking(...)`.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Mapping
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from hbooks.errors import DocumentNotFoundError, DocumentStoreError
from hbooks.utils.async_utils import run_blocking

logger = logging.getLogger(__name__)

Document = dict[str, Any]

CATALOG_COLLECTION = "catalog"
USERS_COLLECTION = "users"
BOOKMARKS_COLLECTION = "bookmarks"
PLAYBACK_POSITIONS_COLLECTION = "playbackPositions"
PLAYLISTS_COLLECTION = "playlists"
USER_DATA_COLLECTION = "userData"
RECENTLY_PLAYED_DOCUMENT = "recentlyPlayed"


def catalog_path(book_id: str | None = None) -> str:
    if book_id is None:
        return CATALOG_COLLECTION
    return f"{CATALOG_COLLECTION}/{book_id}"


def user_collection_path(user_id: str, collection: str) -> str:
    return f"{USERS_COLLECTION}/{user_id}/{collection}"


def user_document_path(user_id: str, collection: str, doc_id: str) -> str:
    return f"{user_collection_path(user_id, collection)}/{doc_id}"


def parent_and_id(path: str) -> tuple[str, str]:
    """Split a document path into its collection path and document id."""
    parts = _segments(path)
    if len(parts) % 2 != 0:
        raise ValueError(f"'{path}' is not a document path")
    return "/".join(parts[:-1]), parts[-1]


def _segments(path: str) -> list[str]:
    parts = [part for part in path.strip("/").split("/") if part]
    if not parts:
        raise ValueError("path must not be empty")
    return parts


class DocumentStore(Protocol):
    """Remote document CRUD consumed by the catalog and per-user stores."""

    async def get(self, path: str) -> Document | None: ...

    async def set(self, path: str, data: Mapping[str, Any]) -> None: ...

    async def update(self, path: str, data: Mapping[str, Any]) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def list_documents(self, parent: str) -> list[tuple[str, Document]]: ...


class InMemoryDocumentStore:
    """Process-local document tree; values are deep-copied in and out."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._documents: dict[str, Document] = {}
        for path, data in (documents or {}).items():
            parent_and_id(path)
            self._documents[path.strip("/")] = copy.deepcopy(dict(data))

    async def get(self, path: str) -> Document | None:
        return _get(self._documents, path)

    async def set(self, path: str, data: Mapping[str, Any]) -> None:
        _set(self._documents, path, data)

    async def update(self, path: str, data: Mapping[str, Any]) -> None:
        _update(self._documents, path, data)

    async def delete(self, path: str) -> None:
        _delete(self._documents, path)

    async def list_documents(self, parent: str) -> list[tuple[str, Document]]:
        return _list(self._documents, parent)

    def snapshot(self) -> dict[str, Document]:
        """Return a deep copy of every stored document keyed by path."""
        return copy.deepcopy(self._documents)


class JsonFileDocumentStore:
    """Document tree persisted as a single JSON object on disk.

    Each call re-reads the file so several processes (CLI invocations) see
    each other's writes; saves are atomic write-then-replace.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        # Held across load, modify and save so concurrent writes to different
        # documents do not overwrite each other.
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, path: str) -> Document | None:
        return await run_blocking(self._get_sync, path)

    async def set(self, path: str, data: Mapping[str, Any]) -> None:
        await run_blocking(self._mutate_sync, _set, path, data)

    async def update(self, path: str, data: Mapping[str, Any]) -> None:
        await run_blocking(self._mutate_sync, _update, path, data)

    async def delete(self, path: str) -> None:
        await run_blocking(self._mutate_sync, _delete, path)

    async def list_documents(self, parent: str) -> list[tuple[str, Document]]:
        return await run_blocking(self._list_sync, parent)

    def _get_sync(self, path: str) -> Document | None:
        return _get(self._load_sync(), path)

    def _list_sync(self, parent: str) -> list[tuple[str, Document]]:
        return _list(self._load_sync(), parent)

    def _mutate_sync(self, operation: Any, path: str, *args: Any) -> None:
        with self._write_lock:
            documents = self._load_sync()
            operation(documents, path, *args)
            self._save_sync(documents)

    def _load_sync(self) -> dict[str, Document]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise DocumentStoreError(
                f"Failed to read document store {self._path}: {exc}"
            ) from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Document store %s is not valid JSON: %s", self._path, exc)
            raise DocumentStoreError(
                f"Document store {self._path} is not valid JSON",
                suggestion="Remove or repair the file and re-seed the catalog.",
            ) from exc
        if not isinstance(data, dict):
            raise DocumentStoreError(f"Document store {self._path} is not a JSON object")
        return {
            str(path): value for path, value in data.items() if isinstance(value, dict)
        }

    def _save_sync(self, documents: dict[str, Document]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DocumentStoreError(
                f"Failed to create directory for {self._path}: {exc}"
            ) from exc
        tmp_path = self._path.with_name(f"{self._path.name}.{uuid4().hex}.tmp")
        payload = json.dumps(documents, indent=2, sort_keys=True)
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            raise DocumentStoreError(
                f"Failed to write document store {self._path}: {exc}"
            ) from exc
        finally:
            with suppress(OSError):
                tmp_path.unlink()


def _key(path: str) -> str:
    parent_and_id(path)
    return "/".join(_segments(path))


def _get(documents: dict[str, Document], path: str) -> Document | None:
    data = documents.get(_key(path))
    return copy.deepcopy(data) if data is not None else None


def _set(documents: dict[str, Document], path: str, data: Mapping[str, Any]) -> None:
    documents[_key(path)] = copy.deepcopy(dict(data))


def _update(documents: dict[str, Document], path: str, data: Mapping[str, Any]) -> None:
    key = _key(path)
    existing = documents.get(key)
    if existing is None:
        raise DocumentNotFoundError(key)
    existing.update(copy.deepcopy(dict(data)))


def _delete(documents: dict[str, Document], path: str) -> None:
    documents.pop(_key(path), None)


def _list(documents: dict[str, Document], parent: str) -> list[tuple[str, Document]]:
    parts = _segments(parent)
    if len(parts) % 2 != 1:
        raise ValueError(f"'{parent}' is not a collection path")
    prefix = "/".join(parts) + "/"
    children = []
    for key, data in documents.items():
        if not key.startswith(prefix):
            continue
        doc_id = key[len(prefix) :]
        if "/" in doc_id:
            continue
        children.append((doc_id, copy.deepcopy(data)))
    children.sort(key=lambda item: item[0])
    return children
