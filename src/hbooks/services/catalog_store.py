"""Public book catalog access with cover URL normalization.

Reads always go to the document store; there is no local catalog cache.
Writes derive asset locations from the book id so every stored book points
at the current storage bucket.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from hbooks.errors import CatalogError
from hbooks.services.documents import CATALOG_COLLECTION, DocumentStore, catalog_path

logger = logging.getLogger(__name__)

PROJECT_ID = "hbooks-b6c94"
LEGACY_BUCKET_HOST = f"{PROJECT_ID}.appspot.com"
CURRENT_BUCKET_HOST = f"{PROJECT_ID}.firebasestorage.app"
DOWNLOAD_HOST = "https://firebasestorage.googleapis.com"
STORAGE_SCHEME = "storage://"


@dataclass(frozen=True)
class Book:
    """Catalog entry; identity is `id`."""

    id: str
    title: str = ""
    author: str = ""
    cover_image_url: str = ""
    audio_url: str = ""
    categories: tuple[str, ...] = field(default_factory=tuple)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "coverImageUrl": self.cover_image_url,
            "audioUrl": self.audio_url,
            "categories": list(self.categories),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> Book:
        categories = data.get("categories")
        return cls(
            id=_str(data.get("id")) or doc_id,
            title=_str(data.get("title")),
            author=_str(data.get("author")),
            cover_image_url=_str(data.get("coverImageUrl")),
            audio_url=_str(data.get("audioUrl")),
            categories=tuple(
                value for value in categories if isinstance(value, str)
            )
            if isinstance(categories, list)
            else (),
        )


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


# Fixed ids keep seeding idempotent.
SEED_BOOKS: tuple[tuple[str, str, str, tuple[str, ...]], ...] = (
    ("book001", "Pride and Prejudice", "Jane Austen", ("Classics", "Romance")),
    (
        "book002",
        "The Adventures of Sherlock Holmes",
        "Arthur Conan Doyle",
        ("Mystery", "Classics"),
    ),
    ("book003", "Meditations", "Marcus Aurelius", ("Philosophy", "Self-Help")),
    ("book004", "The Time Machine", "H. G. Wells", ("Science Fiction", "Classics")),
    ("book005", "The Art of War", "Sun Tzu", ("Philosophy", "History")),
    ("book006", "Frankenstein", "Mary Shelley", ("Horror", "Classics")),
    ("book007", "As a Man Thinketh", "James Allen", ("Self-Help", "Productivity")),
    ("book008", "Treasure Island", "Robert Louis Stevenson", ("Adventure",)),
)


def normalize_cover_url(
    url: str,
    *,
    legacy_host: str = LEGACY_BUCKET_HOST,
    current_host: str = CURRENT_BUCKET_HOST,
) -> str:
    """Rewrite the legacy bucket host to the current one; idempotent."""
    if not url.strip() or legacy_host not in url:
        return url
    return url.replace(legacy_host, current_host)


def cover_url_for(book_id: str, *, bucket_host: str = CURRENT_BUCKET_HOST) -> str:
    return f"{DOWNLOAD_HOST}/v0/b/{bucket_host}/o/covers%2F{book_id}.jpg?alt=media"


def audio_url_for(book_id: str, *, bucket_host: str = CURRENT_BUCKET_HOST) -> str:
    return f"{STORAGE_SCHEME}{bucket_host}/audios/{book_id}.mp3"


class CatalogStore:
    """Catalog reads/writes over the `catalog/{bookId}` collection."""

    def __init__(
        self,
        documents: DocumentStore,
        *,
        legacy_bucket_host: str = LEGACY_BUCKET_HOST,
        current_bucket_host: str = CURRENT_BUCKET_HOST,
    ) -> None:
        if legacy_bucket_host in current_bucket_host:
            raise ValueError("current bucket host must not contain the legacy host")
        self._documents = documents
        self._legacy_host = legacy_bucket_host
        self._current_host = current_bucket_host

    def normalize(self, book: Book) -> Book:
        normalized = normalize_cover_url(
            book.cover_image_url,
            legacy_host=self._legacy_host,
            current_host=self._current_host,
        )
        if normalized == book.cover_image_url:
            return book
        return replace(book, cover_image_url=normalized)

    async def list_books(self) -> list[Book]:
        """Fetch the full catalog in document-id order."""
        try:
            docs = await self._documents.list_documents(CATALOG_COLLECTION)
        except Exception as exc:
            logger.warning("Failed to load catalog: %s", exc)
            raise CatalogError(
                "Unable to load books", suggestion="Check the connection and retry."
            ) from exc
        return [self.normalize(Book.from_document(doc_id, data)) for doc_id, data in docs]

    async def get_book(self, book_id: str) -> Book | None:
        """Fetch one book; `None` when it does not exist."""
        if not book_id.strip():
            return None
        try:
            data = await self._documents.get(catalog_path(book_id))
        except Exception as exc:
            logger.warning("Failed to load book %s: %s", book_id, exc)
            raise CatalogError(f"Unable to load book '{book_id}'") from exc
        if data is None:
            return None
        return self.normalize(Book.from_document(book_id, data))

    def build_book(
        self, book_id: str, title: str, author: str, categories: Sequence[str]
    ) -> Book:
        return Book(
            id=book_id,
            title=title,
            author=author,
            cover_image_url=cover_url_for(book_id, bucket_host=self._current_host),
            audio_url=audio_url_for(book_id, bucket_host=self._current_host),
            categories=tuple(categories),
        )

    async def upsert_book(
        self, book_id: str, title: str, author: str, categories: Sequence[str]
    ) -> Book:
        if not book_id.strip():
            raise CatalogError("Book id must not be blank")
        book = self.build_book(book_id, title, author, categories)
        await self._write(book)
        return book

    async def upsert_books(self, books: Iterable[Book]) -> list[Book]:
        """Write each book, deriving asset URLs from its id."""
        written = []
        for book in books:
            written.append(
                await self.upsert_book(book.id, book.title, book.author, book.categories)
            )
        return written

    async def delete_book(self, book_id: str) -> None:
        try:
            await self._documents.delete(catalog_path(book_id))
        except Exception as exc:
            raise CatalogError(f"Unable to delete book '{book_id}'") from exc

    async def seed_if_empty(self) -> int:
        """Load the built-in catalog when none exists; returns books written."""
        existing = await self.list_books()
        if existing:
            logger.debug("Catalog already holds %d books; skipping seed.", len(existing))
            return 0
        seeded = await self.upsert_books(
            Book(id=book_id, title=title, author=author, categories=categories)
            for book_id, title, author, categories in SEED_BOOKS
        )
        logger.info("Seeded %d books into the catalog.", len(seeded))
        return len(seeded)

    async def _write(self, book: Book) -> None:
        try:
            await self._documents.set(catalog_path(book.id), book.to_document())
        except Exception as exc:
            logger.warning("Failed to write book %s: %s", book.id, exc)
            raise CatalogError(f"Unable to save book '{book.id}'") from exc


def search_books(books: Sequence[Book], query: str) -> list[Book]:
    """Case-insensitive match on title, author or any category."""
    needle = query.strip().lower()
    if not needle:
        return list(books)
    return [
        book
        for book in books
        if needle in book.title.lower()
        or needle in book.author.lower()
        or any(needle in category.lower() for category in book.categories)
    ]


def extract_categories(books: Sequence[Book]) -> list[str]:
    seen: dict[str, str] = {}
    for book in books:
        for category in book.categories:
            trimmed = category.strip()
            if trimmed and trimmed.lower() not in seen:
                seen[trimmed.lower()] = trimmed
    return sorted(seen.values(), key=str.lower)


def filter_by_category(books: Sequence[Book], category: str | None) -> list[Book]:
    if category is None or not category.strip():
        return list(books)
    wanted = category.strip().lower()
    return [
        book
        for book in books
        if any(value.strip().lower() == wanted for value in book.categories)
    ]
