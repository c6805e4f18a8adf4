"""Member and book borrowing summary, with CSV export using the same filters."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from .database import Database
from .models import BorrowStatus
from .validators import parse_date

CSV_FIELDS = [
    "borrow_id", "borrow_date", "due_date", "return_date", "status", "fine_amount",
    "member_id", "member_name", "member_email", "member_phone", "role", "department", "join_date",
    "book_id", "book_title", "isbn", "author", "publisher", "category", "section", "shelf_location", "row_number",
    "staff_id", "staff_name", "staff_email", "shift",
]

_SUMMARY_SQL = """
    SELECT
        b.borrow_id, b.borrow_date, b.due_date, b.return_date, b.status, b.fine_amount,
        m.member_id, m.full_name AS member_name, m.email AS member_email, m.phone AS member_phone,
        m.role, m.department, m.join_date,
        bk.book_id, bk.title AS book_title, bk.isbn, bk.author, bk.publisher, bk.category,
        bk.section, bk.shelf_location, bk.row_number,
        s.staff_id, s.full_name AS staff_name, s.email AS staff_email, s.shift
    FROM borrowings b
    JOIN members m ON m.member_id = b.member_id
    JOIN books bk ON bk.book_id = b.book_id
    JOIN staff s ON s.staff_id = b.staff_id
"""


@dataclass
class SummaryFilter:
    member_id: Optional[int] = None
    status: Optional[str] = None
    overdue_only: bool = False
    query: str = ""


def member_book_summary(db: Database, flt: Optional[SummaryFilter] = None, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Rows of borrowing joined with member, book and staff details."""
    flt = flt or SummaryFilter()
    where: List[str] = []
    params: List[Any] = []

    if flt.member_id:
        where.append("m.member_id = ?")
        params.append(flt.member_id)

    # Unknown status values are ignored rather than rejected.
    if flt.status in {s.value for s in BorrowStatus}:
        where.append("b.status = ?")
        params.append(flt.status)

    if flt.overdue_only:
        where.append("((b.return_date IS NULL AND b.due_date < ?) OR b.status = 'Overdue')")
        params.append((parse_date(today, "today", required=False) or date.today()).isoformat())

    q = (flt.query or "").strip()
    if q:
        where.append("(m.full_name LIKE ? OR m.email LIKE ? OR bk.title LIKE ? OR bk.isbn LIKE ?)")
        like = f"%{q}%"
        params.extend([like, like, like, like])

    sql = _SUMMARY_SQL
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY b.borrow_date DESC, b.borrow_id DESC"

    with db.transaction(write=False) as conn:
        return [dict(row) for row in conn.execute(sql, params).fetchall()]


def export_csv(rows: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_FIELDS, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return output.getvalue()
