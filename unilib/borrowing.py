"""Borrowing lifecycle: create, return and delete borrowing records.

Every public operation runs as one write transaction on the injected
:class:`~unilib.database.Database`. Copy reservation, the record insert, the
return update and the copy release all commit together or not at all.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from . import inventory
from .config import settings
from .database import Database, fetch_row, row_exists
from .errors import ConflictError, ConstraintError, NotFoundError, ValidationError
from .fines import compute_fine
from .models import BorrowingRecord, BorrowStatus
from .validators import parse_date, parse_id

logger = logging.getLogger(__name__)

_LISTING_SQL = """
    SELECT
        b.*,
        m.full_name AS member_name,
        s.full_name AS staff_name,
        bk.title AS book_title
    FROM borrowings b
    JOIN members m ON m.member_id = b.member_id
    JOIN staff s ON s.staff_id = b.staff_id
    JOIN books bk ON bk.book_id = b.book_id
"""

# Unreturned and past due, or returned late.
_OVERDUE_WHERE = "(b.return_date IS NULL AND b.due_date < ?) OR b.status = 'Overdue'"


@dataclass
class BorrowRequest:
    """Input for creating a borrowing, validated before any transaction opens."""

    borrow_id: Any
    borrow_date: Any
    due_date: Any
    member_id: Any
    staff_id: Any
    book_id: Any

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BorrowRequest":
        return cls(
            borrow_id=data.get("borrow_id"),
            borrow_date=data.get("borrow_date"),
            due_date=data.get("due_date"),
            member_id=data.get("member_id"),
            staff_id=data.get("staff_id"),
            book_id=data.get("book_id"),
        )

    def validate(self) -> "BorrowRequest":
        """Return a copy with parsed ids and dates, or raise ValidationError."""
        missing = [
            name
            for name in ("borrow_id", "borrow_date", "due_date", "member_id", "staff_id", "book_id")
            if getattr(self, name) is None or str(getattr(self, name)).strip() == ""
        ]
        if missing:
            raise ValidationError(
                "Please fill borrow_id, borrow_date, due_date, member_id, staff_id, book_id "
                f"(missing: {', '.join(missing)})."
            )
        parsed = BorrowRequest(
            borrow_id=parse_id(self.borrow_id, "borrow_id"),
            borrow_date=parse_date(self.borrow_date, "borrow_date"),
            due_date=parse_date(self.due_date, "due_date"),
            member_id=parse_id(self.member_id, "member_id"),
            staff_id=parse_id(self.staff_id, "staff_id"),
            book_id=parse_id(self.book_id, "book_id"),
        )
        if parsed.due_date < parsed.borrow_date:
            raise ValidationError("due_date must be on or after borrow_date.")
        return parsed


@dataclass
class ReturnResult:
    record: BorrowingRecord
    late_days: int
    changed: bool


class BorrowingRegistry:
    """Orchestrates the borrowing state machine on top of the entity store."""

    def __init__(self, db: Database, daily_rate: Optional[Decimal] = None) -> None:
        self.db = db
        self.daily_rate = settings.daily_fine_rate if daily_rate is None else Decimal(str(daily_rate))

    # ------------------------- Core operations ------------------------- #
    def create(self, request: BorrowRequest) -> BorrowingRecord:
        """Lend one copy of a book: reserve it and record the borrowing."""
        req = request.validate()
        record = BorrowingRecord(
            borrow_id=req.borrow_id,
            borrow_date=req.borrow_date,
            due_date=req.due_date,
            book_id=req.book_id,
            member_id=req.member_id,
            staff_id=req.staff_id,
        )
        try:
            with self.db.transaction() as conn:
                if row_exists(conn, "borrowings", req.borrow_id):
                    raise ConflictError(
                        f"Duplicate borrow id {req.borrow_id}. Use a different borrow_id.",
                        constraint="borrowings.borrow_id",
                    )
                if not row_exists(conn, "members", req.member_id):
                    raise ConstraintError(f"Member {req.member_id} not found.", ConstraintError.NOT_FOUND)
                if not row_exists(conn, "staff", req.staff_id):
                    raise ConstraintError(f"Staff {req.staff_id} not found.", ConstraintError.NOT_FOUND)
                try:
                    inventory.reserve(conn, req.book_id)
                except NotFoundError as exc:
                    raise ConstraintError(f"Book {req.book_id} not found.", ConstraintError.NOT_FOUND) from exc
                self._insert(conn, record)
        except (ConflictError, ConstraintError) as exc:
            logger.warning("Borrowing %s rejected: %s", req.borrow_id, exc)
            raise
        logger.info(
            "Borrowing %s created: book %s to member %s, due %s",
            record.borrow_id, record.book_id, record.member_id, record.due_date,
        )
        return record

    def return_borrowing(self, borrow_id: Any, today: Optional[date] = None) -> ReturnResult:
        """Close a borrowing, charge any late fine and put the copy back.

        Returning an already closed record changes nothing and is not an error.
        """
        borrow_id = parse_id(borrow_id, "borrow_id")
        today = parse_date(today, "today", required=False) or date.today()
        with self.db.transaction() as conn:
            record = self._load(conn, borrow_id)
            if record.is_closed:
                logger.info("Borrowing %s already closed (%s); return skipped", borrow_id, record.status.value)
                return ReturnResult(record=record, late_days=0, changed=False)

            late_days, fine = compute_fine(record.due_date, today, self.daily_rate)
            record.return_date = today
            record.fine_amount = fine
            record.status = BorrowStatus.OVERDUE if late_days > 0 else BorrowStatus.RETURNED
            conn.execute(
                "UPDATE borrowings SET return_date = ?, status = ?, fine_amount = ? WHERE borrow_id = ?",
                (today.isoformat(), record.status.value, float(fine), borrow_id),
            )
            inventory.release(conn, record.book_id)
        logger.info(
            "Borrowing %s returned: status %s, %d late day(s), fine %s",
            borrow_id, record.status.value, late_days, record.fine_amount,
        )
        return ReturnResult(record=record, late_days=late_days, changed=True)

    def delete(self, borrow_id: Any) -> None:
        """Remove a returned borrowing record. Inventory is left untouched."""
        borrow_id = parse_id(borrow_id, "borrow_id")
        with self.db.transaction() as conn:
            record = self._load(conn, borrow_id)
            if record.status is not BorrowStatus.RETURNED:
                logger.warning("Borrowing %s not deleted: status is %s", borrow_id, record.status.value)
                raise ConstraintError(
                    "Cannot delete: only Returned records can be deleted (to keep inventory consistent).",
                    ConstraintError.NOT_RETURNED,
                )
            conn.execute("DELETE FROM borrowings WHERE borrow_id = ?", (borrow_id,))
        logger.info("Borrowing %s deleted", borrow_id)

    # ------------------------- Queries ------------------------- #
    def get(self, borrow_id: Any) -> BorrowingRecord:
        borrow_id = parse_id(borrow_id, "borrow_id")
        with self.db.transaction(write=False) as conn:
            return self._load(conn, borrow_id)

    def list_borrowings(self, overdue_only: bool = False, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """Borrowings joined with member, staff and book names, newest id first."""
        sql = _LISTING_SQL
        params: list = []
        if overdue_only:
            sql += f" WHERE {_OVERDUE_WHERE}"
            today = parse_date(today, "today", required=False) or date.today()
            params.append(today.isoformat())
        sql += " ORDER BY b.borrow_id DESC"
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(sql, params).fetchall()
        listing = []
        for row in rows:
            item = BorrowingRecord.from_row(row).to_dict()
            item.update(
                member_name=row["member_name"],
                staff_name=row["staff_name"],
                book_title=row["book_title"],
            )
            listing.append(item)
        return listing

    def list_overdue(self, today: Optional[date] = None) -> List[BorrowingRecord]:
        """Records that are unreturned past due, or were returned late."""
        today = parse_date(today, "today", required=False) or date.today()
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(
                f"SELECT * FROM borrowings b WHERE {_OVERDUE_WHERE} ORDER BY b.borrow_id DESC",
                (today.isoformat(),),
            ).fetchall()
        return [BorrowingRecord.from_row(row) for row in rows]

    # ------------------------- Persistence ------------------------- #
    @staticmethod
    def _load(conn: sqlite3.Connection, borrow_id: int) -> BorrowingRecord:
        row = fetch_row(conn, "borrowings", borrow_id)
        if row is None:
            raise NotFoundError("borrowing", borrow_id, f"Borrowing record {borrow_id} not found.")
        return BorrowingRecord.from_row(row)

    @staticmethod
    def _insert(conn: sqlite3.Connection, record: BorrowingRecord) -> None:
        conn.execute(
            """
            INSERT INTO borrowings
                (borrow_id, borrow_date, due_date, return_date, fine_amount, status, book_id, member_id, staff_id)
            VALUES (?, ?, ?, NULL, 0, ?, ?, ?, ?)
            """,
            (
                record.borrow_id,
                record.borrow_date.isoformat(),
                record.due_date.isoformat(),
                record.status.value,
                record.book_id,
                record.member_id,
                record.staff_id,
            ),
        )
