"""Exception hierarchy and user-facing error message formatting."""

from __future__ import annotations


class HBooksError(Exception):
    """Base exception for all hbooks errors."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class ValidationError(HBooksError, ValueError):
    """Input rejected at the call boundary before any I/O happens."""


class DocumentStoreError(HBooksError):
    """Document store transport or permission failure."""


class DocumentNotFoundError(DocumentStoreError):
    """Partial update targeted a document that does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Document '{path}' does not exist")
        self.path = path


class CatalogError(HBooksError):
    """Catalog read or write failed."""


class AuthError(HBooksError):
    """Identity provider rejected or failed an action."""


class StorageResolutionError(HBooksError):
    """Storage reference could not be turned into a download URL."""


def format_user_error(
    *, what_failed: str, likely_cause: str, next_step: str, detail: str | None = None
) -> str:
    message = f"{what_failed}\nLikely cause: {likely_cause}\nNext step: {next_step}"
    if detail:
        message = f"{message}\nDetails: {detail}"
    return message
