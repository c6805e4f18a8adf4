"""SQLite entity store for books, members, staff and borrowing records.

Each request opens its own connection through a :class:`Database` handle and
runs inside :meth:`Database.transaction`, which takes SQLite's write lock up
front (``BEGIN IMMEDIATE``) and commits or rolls back as a unit.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from .config import settings
from .errors import ConflictError, ConstraintError, StorageError

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE from the environment (also read by config.py/.env)
# 2) Settings.db_file
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.db_file

# Primary key column of every table the store manages.
PRIMARY_KEYS = {
    "books": "book_id",
    "members": "member_id",
    "staff": "staff_id",
    "borrowings": "borrow_id",
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    book_id INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    isbn TEXT NOT NULL UNIQUE,
    author TEXT,
    publisher TEXT,
    language TEXT,
    edition TEXT,
    category TEXT,
    shelf_location TEXT,
    section TEXT,
    row_number INTEGER,
    total_copies INTEGER NOT NULL CHECK (total_copies >= 0),
    available_copies INTEGER NOT NULL
        CHECK (available_copies >= 0 AND available_copies <= total_copies),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS members (
    member_id INTEGER PRIMARY KEY,
    full_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL,
    phone TEXT,
    join_date TEXT NOT NULL,
    department TEXT
);

CREATE TABLE IF NOT EXISTS staff (
    staff_id INTEGER PRIMARY KEY,
    full_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    phone TEXT,
    hire_date TEXT,
    shift TEXT NOT NULL,
    status TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS borrowings (
    borrow_id INTEGER PRIMARY KEY,
    borrow_date TEXT NOT NULL,
    due_date TEXT NOT NULL,
    return_date TEXT,
    fine_amount REAL NOT NULL DEFAULT 0 CHECK (fine_amount >= 0),
    status TEXT NOT NULL DEFAULT 'Borrowed'
        CHECK (status IN ('Borrowed', 'Returned', 'Overdue')),
    book_id INTEGER NOT NULL REFERENCES books (book_id),
    member_id INTEGER NOT NULL REFERENCES members (member_id),
    staff_id INTEGER NOT NULL REFERENCES staff (staff_id),
    CHECK (due_date >= borrow_date)
);

CREATE INDEX IF NOT EXISTS idx_borrowings_book_id ON borrowings (book_id);
CREATE INDEX IF NOT EXISTS idx_borrowings_member_id ON borrowings (member_id);
CREATE INDEX IF NOT EXISTS idx_borrowings_staff_id ON borrowings (staff_id);
CREATE INDEX IF NOT EXISTS idx_borrowings_status_due ON borrowings (status, due_date);
"""


def translate_integrity_error(exc: sqlite3.IntegrityError) -> Exception:
    """Map an IntegrityError to a library error by SQLite's extended error name."""
    name = getattr(exc, "sqlite_errorname", "")
    if name in ("SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"):
        return ConflictError("Duplicate value (unique constraint).", constraint=name)
    if name == "SQLITE_CONSTRAINT_FOREIGNKEY":
        return ConstraintError("Row is referenced by, or references, a missing row.", ConstraintError.IN_USE)
    return ConstraintError(f"Store rejected the change ({name or 'constraint'}).", ConstraintError.CHECK_FAILED)


class Database:
    """Handle to one SQLite database file. Holds no open connection itself."""

    def __init__(self, db_file: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.db_file = db_file or DATABASE_FILE
        self.timeout = settings.db_timeout if timeout is None else timeout

    def connect(self) -> sqlite3.Connection:
        """Open a new connection in autocommit mode; transactions are explicit."""
        try:
            conn = sqlite3.connect(
                self.db_file,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            logger.error("Could not open database %s: %s", self.db_file, exc)
            raise StorageError(f"Could not open database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(self.timeout * 1000)};")
        return conn

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[sqlite3.Connection]:
        """Run the block in one transaction on a fresh connection.

        Write transactions acquire the database write lock immediately, so
        read-check-update sequences inside the block are serialized against
        every other writer. The lock is released on commit or rollback.
        """
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.IntegrityError as exc:
            raise translate_integrity_error(exc) from exc
        except sqlite3.Error as exc:
            logger.error("Transaction aborted on %s: %s", self.db_file, exc)
            raise StorageError(f"Storage failure: {exc}") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create tables and indexes if they do not exist yet."""
        conn = self.connect()
        try:
            # WAL lets readers proceed while a writer holds the lock.
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not create schema: {exc}") from exc
        finally:
            conn.close()
        logger.debug("Database initialized at %s", self.db_file)


def fetch_row(conn: sqlite3.Connection, table: str, key: Any) -> Optional[sqlite3.Row]:
    """Fetch a row by primary key."""
    column = PRIMARY_KEYS[table]
    return conn.execute(f"SELECT * FROM {table} WHERE {column} = ?", (key,)).fetchone()


def row_exists(conn: sqlite3.Connection, table: str, key: Any) -> bool:
    column = PRIMARY_KEYS[table]
    return conn.execute(f"SELECT 1 FROM {table} WHERE {column} = ?", (key,)).fetchone() is not None


def ensure_unique(
    conn: sqlite3.Connection,
    table: str,
    column: str,
    value: Any,
    label: str,
    exclude_key: Any = None,
) -> None:
    """Raise ConflictError if another row of ``table`` already holds ``value``.

    Must be called inside a write transaction so no other writer can insert
    the same value between the check and the caller's INSERT/UPDATE.
    """
    sql = f"SELECT 1 FROM {table} WHERE {column} = ?"
    params: list = [value]
    if exclude_key is not None:
        sql += f" AND {PRIMARY_KEYS[table]} != ?"
        params.append(exclude_key)
    if conn.execute(sql, params).fetchone() is not None:
        raise ConflictError(f"{label} already exists.", constraint=f"{table}.{column}")


def initialize_database(db_file: Optional[str] = None) -> Database:
    """Build a handle for ``db_file`` and make sure its schema exists."""
    db = Database(db_file)
    db.initialize()
    return db
