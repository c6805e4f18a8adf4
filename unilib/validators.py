import re
from datetime import date, datetime
from typing import Any, Optional

from .errors import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ISBN_NOISE_RE = re.compile(r"[\s-]")


def _isbn10_ok(isbn: str) -> bool:
    if not (isbn[:9].isdigit() and (isbn[9].isdigit() or isbn[9] == "X")):
        return False
    values = [int(ch) for ch in isbn[:9]] + [10 if isbn[9] == "X" else int(isbn[9])]
    return sum(weight * v for weight, v in zip(range(10, 0, -1), values)) % 11 == 0


def _isbn13_ok(isbn: str) -> bool:
    if not isbn.isdigit():
        return False
    return sum(int(ch) * (3 if i % 2 else 1) for i, ch in enumerate(isbn)) % 10 == 0


def parse_isbn(value: Any, field: str = "isbn") -> str:
    """Strip spaces and hyphens from an ISBN-10/13 and verify its check digit."""
    isbn = _ISBN_NOISE_RE.sub("", require_text(value, field)).upper()
    ok = (len(isbn) == 10 and _isbn10_ok(isbn)) or (len(isbn) == 13 and _isbn13_ok(isbn))
    if not ok:
        raise ValidationError("Invalid ISBN format.")
    return isbn


class TextValidator:
    """Helpers for the free-text fields of form and JSON input."""

    @staticmethod
    def clean(text: Any) -> Optional[str]:
        """Trim a value; blank strings count as missing."""
        if text is None:
            return None
        t = str(text).strip()
        return t or None

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        return bool(email) and _EMAIL_RE.match(email) is not None


def parse_id(value: Any, field: str, required: bool = True) -> Optional[int]:
    """Parse a caller-assigned positive integer identifier."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required.")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer.")
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{field} must be a positive integer.") from exc
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer.")
    return parsed


def parse_count(value: Any, field: str) -> int:
    """Parse a non-negative copy count."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required.")
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{field} must be an integer.") from exc
    if parsed < 0:
        raise ValidationError("Copies cannot be negative.")
    return parsed


def parse_date(value: Any, field: str, required: bool = True) -> Optional[date]:
    """Parse an ISO ``YYYY-MM-DD`` date. ``datetime`` values keep only their date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = TextValidator.clean(value)
    if text is None:
        if required:
            raise ValidationError(f"{field} is required.")
        return None
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format.") from exc


def require_text(value: Any, field: str) -> str:
    text = TextValidator.clean(value)
    if text is None:
        raise ValidationError(f"{field} is required.")
    return text
