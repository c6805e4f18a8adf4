"""Plain record keeping for books, members and staff.

Uniqueness of ids, ISBNs and emails is checked inside the write transaction,
and deletes go through the :class:`~unilib.guard.ReferentialGuard`.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Mapping, Optional

from .database import Database, ensure_unique, fetch_row
from .errors import ConstraintError, NotFoundError, ValidationError
from .guard import EntityKind, ReferentialGuard
from .models import Book, Member, Staff
from .validators import (
    TextValidator,
    parse_count,
    parse_date,
    parse_id,
    parse_isbn,
    require_text,
)

logger = logging.getLogger(__name__)

BOOK_TEXT_FIELDS = ("author", "publisher", "language", "edition", "category", "shelf_location", "section")


def _email(value: Any) -> str:
    email = require_text(value, "email").lower()
    if not TextValidator.is_valid_email(email):
        raise ValidationError("Invalid email address.")
    return email


def _book_from_input(data: Mapping[str, Any]) -> Book:
    total = parse_count(data.get("total_copies"), "total_copies")
    available = parse_count(data.get("available_copies"), "available_copies")
    if available > total:
        raise ValidationError("available_copies must be <= total_copies.")
    book = Book(
        book_id=parse_id(data.get("book_id"), "book_id"),
        title=require_text(data.get("title"), "title"),
        isbn=parse_isbn(data.get("isbn")),
        total_copies=total,
        available_copies=available,
        row_number=parse_id(data.get("row_number"), "row_number", required=False),
    )
    for name in BOOK_TEXT_FIELDS:
        setattr(book, name, TextValidator.clean(data.get(name)))
    return book


def _member_from_input(data: Mapping[str, Any]) -> Member:
    return Member(
        member_id=parse_id(data.get("member_id"), "member_id"),
        full_name=require_text(data.get("full_name"), "full_name"),
        email=_email(data.get("email")),
        role=require_text(data.get("role"), "role"),
        join_date=parse_date(data.get("join_date"), "join_date"),
        phone=TextValidator.clean(data.get("phone")),
        department=TextValidator.clean(data.get("department")),
    )


def _staff_from_input(data: Mapping[str, Any]) -> Staff:
    return Staff(
        staff_id=parse_id(data.get("staff_id"), "staff_id"),
        full_name=require_text(data.get("full_name"), "full_name"),
        email=_email(data.get("email")),
        shift=require_text(data.get("shift"), "shift"),
        status=require_text(data.get("status"), "status"),
        hire_date=parse_date(data.get("hire_date"), "hire_date", required=False),
        phone=TextValidator.clean(data.get("phone")),
    )


def _insert(conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> None:
    columns = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({marks})", list(values.values()))


def _update(conn: sqlite3.Connection, table: str, key_column: str, key: Any, values: Dict[str, Any]) -> None:
    assignments = ", ".join(f"{column} = ?" for column in values)
    conn.execute(f"UPDATE {table} SET {assignments} WHERE {key_column} = ?", [*values.values(), key])


class Catalog:
    """Books, members and staff: add, read, edit and guarded delete."""

    def __init__(self, db: Database, guard: Optional[ReferentialGuard] = None) -> None:
        self.db = db
        self.guard = guard or ReferentialGuard(db)

    # ------------------------- Books ------------------------- #
    def add_book(self, data: Mapping[str, Any]) -> Book:
        book = _book_from_input(data)
        with self.db.transaction() as conn:
            ensure_unique(conn, "books", "book_id", book.book_id, f"Book ID {book.book_id}")
            ensure_unique(conn, "books", "isbn", book.isbn, f"ISBN {book.isbn}")
            _insert(conn, "books", book.to_dict())
        logger.info("Book %s added (%d copies)", book.book_id, book.total_copies)
        return book

    def get_book(self, book_id: Any) -> Book:
        book_id = parse_id(book_id, "book_id")
        with self.db.transaction(write=False) as conn:
            return Book.from_row(self._require(conn, "books", book_id, "book"))

    def list_books(self, available_only: bool = False) -> List[Book]:
        sql = "SELECT * FROM books"
        if available_only:
            sql += " WHERE available_copies > 0 ORDER BY title"
        else:
            sql += " ORDER BY book_id DESC"
        with self.db.transaction(write=False) as conn:
            return [Book.from_row(row) for row in conn.execute(sql).fetchall()]

    def update_book(self, book_id: Any, **fields: Any) -> Book:
        """Edit a book. Unset (None) fields keep their current value.

        ``available_copies`` cannot be set directly: changing ``total_copies``
        shifts it by the same amount so copies on loan stay accounted for.
        """
        book_id = parse_id(book_id, "book_id")
        if "available_copies" in fields and fields["available_copies"] is not None:
            raise ValidationError("available_copies changes only through borrowing and returns.")
        with self.db.transaction() as conn:
            book = Book.from_row(self._require(conn, "books", book_id, "book"))
            if fields.get("title") is not None:
                book.title = require_text(fields["title"], "title")
            if fields.get("isbn") is not None:
                book.isbn = parse_isbn(fields["isbn"])
                ensure_unique(conn, "books", "isbn", book.isbn, f"ISBN {book.isbn}", exclude_key=book_id)
            if fields.get("total_copies") is not None:
                new_total = parse_count(fields["total_copies"], "total_copies")
                if new_total < book.on_loan:
                    raise ConstraintError(
                        f"Book {book_id} has {book.on_loan} copies on loan; total cannot drop to {new_total}.",
                        ConstraintError.IN_USE,
                    )
                book.available_copies += new_total - book.total_copies
                book.total_copies = new_total
            if fields.get("row_number") is not None:
                book.row_number = parse_id(fields["row_number"], "row_number")
            for name in BOOK_TEXT_FIELDS:
                if fields.get(name) is not None:
                    setattr(book, name, TextValidator.clean(fields[name]))
            values = book.to_dict()
            values.pop("book_id")
            _update(conn, "books", "book_id", book_id, values)
        logger.info("Book %s updated", book_id)
        return book

    def delete_book(self, book_id: Any) -> None:
        self._delete(EntityKind.BOOK, book_id)

    # ------------------------- Members ------------------------- #
    def add_member(self, data: Mapping[str, Any]) -> Member:
        member = _member_from_input(data)
        with self.db.transaction() as conn:
            ensure_unique(conn, "members", "member_id", member.member_id, f"Member ID {member.member_id}")
            ensure_unique(conn, "members", "email", member.email, f"Email {member.email}")
            _insert(conn, "members", member.to_dict())
        logger.info("Member %s added", member.member_id)
        return member

    def get_member(self, member_id: Any) -> Member:
        member_id = parse_id(member_id, "member_id")
        with self.db.transaction(write=False) as conn:
            return Member.from_row(self._require(conn, "members", member_id, "member"))

    def list_members(self) -> List[Dict[str, Any]]:
        """Members with their borrowing count, computed from the borrowing records."""
        with self.db.transaction(write=False) as conn:
            rows = conn.execute(
                """
                SELECT m.*, COUNT(b.borrow_id) AS total_borrowed
                FROM members m
                LEFT JOIN borrowings b ON b.member_id = m.member_id
                GROUP BY m.member_id
                ORDER BY m.member_id DESC
                """
            ).fetchall()
        listing = []
        for row in rows:
            item = Member.from_row(row).to_dict()
            item["total_borrowed"] = row["total_borrowed"]
            listing.append(item)
        return listing

    def update_member(self, member_id: Any, **fields: Any) -> Member:
        member_id = parse_id(member_id, "member_id")
        with self.db.transaction() as conn:
            current = Member.from_row(self._require(conn, "members", member_id, "member")).to_dict()
            current.update({k: v for k, v in fields.items() if v is not None and k != "member_id"})
            member = _member_from_input(current)
            ensure_unique(conn, "members", "email", member.email, f"Email {member.email}", exclude_key=member_id)
            values = member.to_dict()
            values.pop("member_id")
            _update(conn, "members", "member_id", member_id, values)
        logger.info("Member %s updated", member_id)
        return member

    def delete_member(self, member_id: Any) -> None:
        self._delete(EntityKind.MEMBER, member_id)

    # ------------------------- Staff ------------------------- #
    def add_staff(self, data: Mapping[str, Any]) -> Staff:
        staff = _staff_from_input(data)
        with self.db.transaction() as conn:
            ensure_unique(conn, "staff", "staff_id", staff.staff_id, f"Staff ID {staff.staff_id}")
            ensure_unique(conn, "staff", "email", staff.email, f"Email {staff.email}")
            _insert(conn, "staff", staff.to_dict())
        logger.info("Staff %s added", staff.staff_id)
        return staff

    def get_staff(self, staff_id: Any) -> Staff:
        staff_id = parse_id(staff_id, "staff_id")
        with self.db.transaction(write=False) as conn:
            return Staff.from_row(self._require(conn, "staff", staff_id, "staff"))

    def list_staff(self) -> List[Staff]:
        with self.db.transaction(write=False) as conn:
            rows = conn.execute("SELECT * FROM staff ORDER BY staff_id DESC").fetchall()
        return [Staff.from_row(row) for row in rows]

    def update_staff(self, staff_id: Any, **fields: Any) -> Staff:
        staff_id = parse_id(staff_id, "staff_id")
        with self.db.transaction() as conn:
            current = Staff.from_row(self._require(conn, "staff", staff_id, "staff")).to_dict()
            current.update({k: v for k, v in fields.items() if v is not None and k != "staff_id"})
            staff = _staff_from_input(current)
            ensure_unique(conn, "staff", "email", staff.email, f"Email {staff.email}", exclude_key=staff_id)
            values = staff.to_dict()
            values.pop("staff_id")
            _update(conn, "staff", "staff_id", staff_id, values)
        logger.info("Staff %s updated", staff_id)
        return staff

    def delete_staff(self, staff_id: Any) -> None:
        self._delete(EntityKind.STAFF, staff_id)

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _require(conn: sqlite3.Connection, table: str, key: int, entity: str) -> sqlite3.Row:
        row = fetch_row(conn, table, key)
        if row is None:
            raise NotFoundError(entity, key)
        return row

    def _delete(self, kind: EntityKind, entity_id: Any) -> None:
        entity_id = parse_id(entity_id, f"{kind.value}_id")
        with self.db.transaction() as conn:
            # The guard raises NotFoundError for unknown ids.
            if not self.guard.can_delete(kind, entity_id, conn):
                logger.warning("Refusing to delete %s %s: linked to borrowing records", kind.value, entity_id)
                raise ConstraintError(
                    f"Cannot delete: this {kind.value} is linked to borrowing records.",
                    ConstraintError.IN_USE,
                )
            conn.execute(f"DELETE FROM {kind.table} WHERE {kind.reference_column} = ?", (entity_id,))
        logger.info("%s %s deleted", kind.value.capitalize(), entity_id)
