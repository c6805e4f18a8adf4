"""Error taxonomy shared by the circulation core and its surfaces.

Every failure carries a ``kind`` so the HTTP and CLI layers can render a
precise message without inspecting exception text.
"""

from __future__ import annotations

from typing import Any, Optional


class LibraryError(Exception):
    """Base class for all library failures."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError, ValueError):
    """Missing or malformed input. Always caller-correctable."""

    kind = "validation"


class NotFoundError(LibraryError, LookupError):
    """An identifier that does not exist was referenced."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None) -> None:
        super().__init__(message or f"{entity.capitalize()} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(LibraryError):
    """A caller-assigned key collides with an existing row."""

    kind = "conflict"

    def __init__(self, message: str, constraint: str) -> None:
        super().__init__(message)
        self.constraint = constraint


class ConstraintError(LibraryError):
    """A business rule rejected the operation."""

    kind = "constraint"

    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not-found"
    NOT_RETURNED = "not-returned"
    IN_USE = "in-use"
    OVER_RELEASE = "over-release"
    CHECK_FAILED = "check-failed"

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class UnavailableError(ConstraintError):
    """No copies of the book are left to lend."""

    def __init__(self, book_id: Any) -> None:
        super().__init__(f"No available copies for book {book_id}.", ConstraintError.UNAVAILABLE)
        self.book_id = book_id


class StorageError(LibraryError):
    """The store failed (lock timeout, I/O, connectivity). Safe to retry."""

    kind = "storage"
