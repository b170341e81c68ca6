"""Tests for the error taxonomy and user-facing message layout."""

from __future__ import annotations

import pytest

from hbooks.errors import (
    DocumentNotFoundError,
    DocumentStoreError,
    HBooksError,
    ValidationError,
    format_user_error,
)


def test_suggestion_is_appended_to_message() -> None:
    error = HBooksError("Unable to load books", suggestion="Retry later.")
    assert "Unable to load books" in str(error)
    assert "Retry later." in str(error)
    assert error.suggestion == "Retry later."


def test_validation_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        raise ValidationError("bad input")


def test_not_found_is_a_document_store_error() -> None:
    assert issubclass(DocumentNotFoundError, DocumentStoreError)


def test_format_user_error_layout() -> None:
    message = format_user_error(
        what_failed="Failed.",
        likely_cause="Cause.",
        next_step="Retry.",
        detail="boom",
    )
    assert message.splitlines() == [
        "Failed.",
        "Likely cause: Cause.",
        "Next step: Retry.",
        "Details: boom",
    ]
    assert "Details" not in format_user_error(
        what_failed="Failed.", likely_cause="Cause.", next_step="Retry."
    )
