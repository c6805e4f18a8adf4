from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class BorrowStatus(str, Enum):
    BORROWED = "Borrowed"
    RETURNED = "Returned"
    # Set permanently when a copy comes back late; not "currently outstanding".
    OVERDUE = "Overdue"

    @property
    def is_terminal(self) -> bool:
        return self is not BorrowStatus.BORROWED


def _to_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _to_money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(Decimal("0.01"))


class _Record:
    """Shared (de)serialization for the persisted entities."""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, date):
                data[key] = value.isoformat()
            elif isinstance(value, Decimal):
                data[key] = float(value)
            elif isinstance(value, Enum):
                data[key] = value.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_row(cls, row: sqlite3.Row):
        return cls.from_dict(dict(row))


@dataclass
class Book(_Record):
    """A catalog title together with its physical copy counts."""

    book_id: int
    title: str
    isbn: str
    total_copies: int
    available_copies: int
    author: Optional[str] = None
    publisher: Optional[str] = None
    language: Optional[str] = None
    edition: Optional[str] = None
    category: Optional[str] = None
    shelf_location: Optional[str] = None
    section: Optional[str] = None
    row_number: Optional[int] = None

    @property
    def on_loan(self) -> int:
        return self.total_copies - self.available_copies


@dataclass
class Member(_Record):
    member_id: int
    full_name: str
    email: str
    role: str
    join_date: date
    phone: Optional[str] = None
    department: Optional[str] = None

    def __post_init__(self) -> None:
        self.join_date = _to_date(self.join_date)


@dataclass
class Staff(_Record):
    staff_id: int
    full_name: str
    email: str
    shift: str
    status: str
    hire_date: Optional[date] = None
    phone: Optional[str] = None

    def __post_init__(self) -> None:
        self.hire_date = _to_date(self.hire_date)


@dataclass
class BorrowingRecord(_Record):
    """One loan of one copy of a book to a member, handled by a staff member."""

    borrow_id: int
    borrow_date: date
    due_date: date
    book_id: int
    member_id: int
    staff_id: int
    status: BorrowStatus = BorrowStatus.BORROWED
    return_date: Optional[date] = None
    fine_amount: Decimal = Decimal("0.00")

    def __post_init__(self) -> None:
        self.borrow_date = _to_date(self.borrow_date)
        self.due_date = _to_date(self.due_date)
        self.return_date = _to_date(self.return_date)
        self.status = BorrowStatus(self.status)
        self.fine_amount = _to_money(self.fine_amount)

    @property
    def is_closed(self) -> bool:
        return self.status.is_terminal

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """True when unreturned past its due date, or when it was returned late."""
        today = today or date.today()
        if self.status is BorrowStatus.OVERDUE:
            return True
        return self.return_date is None and self.due_date < today
