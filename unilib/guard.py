"""Pre-delete check: an entity referenced by borrowing records must stay."""

from __future__ import annotations

import logging
import sqlite3
from enum import Enum
from typing import Any, Optional

from .database import Database, row_exists
from .errors import NotFoundError
from .validators import parse_id

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    BOOK = "book"
    MEMBER = "member"
    STAFF = "staff"

    @property
    def table(self) -> str:
        return {"book": "books", "member": "members", "staff": "staff"}[self.value]

    @property
    def reference_column(self) -> str:
        """Column of ``borrowings`` pointing at this kind of entity."""
        return f"{self.value}_id"


class ReferentialGuard:
    """Counts borrowing references before a book, member or staff row is deleted.

    A check racing with a concurrent borrowing may under-count; the store's
    foreign keys still reject the DELETE that follows.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def count_references(self, kind: EntityKind, entity_id: Any, conn: Optional[sqlite3.Connection] = None) -> int:
        kind = EntityKind(kind)
        entity_id = parse_id(entity_id, f"{kind.value}_id")
        if conn is not None:
            return self._count(conn, kind, entity_id)
        with self.db.transaction(write=False) as conn:
            return self._count(conn, kind, entity_id)

    def can_delete(self, kind: EntityKind, entity_id: Any, conn: Optional[sqlite3.Connection] = None) -> bool:
        used = self.count_references(kind, entity_id, conn)
        if used:
            logger.info("%s %s is linked to %d borrowing record(s)", EntityKind(kind).value, entity_id, used)
        return used == 0

    def can_delete_book(self, book_id: Any) -> bool:
        return self.can_delete(EntityKind.BOOK, book_id)

    def can_delete_member(self, member_id: Any) -> bool:
        return self.can_delete(EntityKind.MEMBER, member_id)

    def can_delete_staff(self, staff_id: Any) -> bool:
        return self.can_delete(EntityKind.STAFF, staff_id)

    @staticmethod
    def _count(conn: sqlite3.Connection, kind: EntityKind, entity_id: int) -> int:
        if not row_exists(conn, kind.table, entity_id):
            raise NotFoundError(kind.value, entity_id)
        row = conn.execute(
            f"SELECT COUNT(*) FROM borrowings WHERE {kind.reference_column} = ?", (entity_id,)
        ).fetchone()
        return int(row[0])
