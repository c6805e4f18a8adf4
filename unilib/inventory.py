"""Copy-count ledger: reserve and release physical copies of a book.

Both operations run on the caller's connection and are only durable when the
caller's transaction commits. The UPDATE statements are guarded so the counts
can never leave ``0 <= available_copies <= total_copies``.
"""

import logging
import sqlite3
from typing import Tuple

from .errors import ConstraintError, NotFoundError, UnavailableError

logger = logging.getLogger(__name__)


def get_counts(conn: sqlite3.Connection, book_id: int) -> Tuple[int, int]:
    """Return ``(total_copies, available_copies)`` for a book."""
    row = conn.execute(
        "SELECT total_copies, available_copies FROM books WHERE book_id = ?", (book_id,)
    ).fetchone()
    if row is None:
        raise NotFoundError("book", book_id)
    return row["total_copies"], row["available_copies"]


def reserve(conn: sqlite3.Connection, book_id: int) -> None:
    """Take one copy off the shelf."""
    cursor = conn.execute(
        "UPDATE books SET available_copies = available_copies - 1 "
        "WHERE book_id = ? AND available_copies > 0",
        (book_id,),
    )
    if cursor.rowcount == 1:
        logger.debug("Reserved a copy of book %s", book_id)
        return
    # Nothing updated: tell "no such book" apart from "none left".
    get_counts(conn, book_id)
    raise UnavailableError(book_id)


def release(conn: sqlite3.Connection, book_id: int) -> None:
    """Put one copy back on the shelf."""
    cursor = conn.execute(
        "UPDATE books SET available_copies = available_copies + 1 "
        "WHERE book_id = ? AND available_copies < total_copies",
        (book_id,),
    )
    if cursor.rowcount == 1:
        logger.debug("Released a copy of book %s", book_id)
        return
    total, available = get_counts(conn, book_id)
    raise ConstraintError(
        f"Book {book_id} already has all {total} copies available ({available}).",
        ConstraintError.OVER_RELEASE,
    )
