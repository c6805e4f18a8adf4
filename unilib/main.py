import logging
import os
import subprocess
import sys
from datetime import date
from pathlib import Path
from typing import NoReturn, Optional

import typer

from .borrowing import BorrowRequest
from .config import settings
from .database import DATABASE_FILE, initialize_database
from .errors import LibraryError
from .guard import EntityKind
from .library import Library
from .reports import SummaryFilter, export_csv, member_book_summary
from .ui_helpers import print_borrowings, print_error, print_record, set_output_mode

APP_NAME = "Library Circulation CLI"

app = typer.Typer(help=APP_NAME)


class LibraryManager:
    """One Library per database file for the lifetime of the CLI process."""

    _instance: Optional[Library] = None
    _db_file: str = DATABASE_FILE

    @classmethod
    def use(cls, db_file: str) -> None:
        if db_file != cls._db_file:
            cls._db_file = db_file
            cls._instance = None

    @classmethod
    def get_instance(cls) -> Library:
        if cls._instance is None or cls._instance.db_file != cls._db_file:
            cls._instance = Library(cls._db_file)
        return cls._instance


def _fail(exc: LibraryError) -> NoReturn:
    print_error(exc.kind, exc.message)
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: str = typer.Option(DATABASE_FILE, "--db", envvar="LIBRARY_DB_FILE", help="SQLite database file"),
):
    """Global CLI options (output mode, database file)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)
    LibraryManager.use(db)


@app.command("init-db")
def cli_init_db():
    """Create the database schema if it does not exist."""
    try:
        db = initialize_database(LibraryManager._db_file)
    except LibraryError as exc:
        _fail(exc)
    print(f"Database ready at {db.db_file}")


@app.command("borrow")
def cli_borrow(
    borrow_id: int,
    book_id: int,
    member_id: int,
    staff_id: int,
    due: str = typer.Option(..., "--due", help="Due date (YYYY-MM-DD)"),
    borrowed: Optional[str] = typer.Option(None, "--date", help="Borrow date (default: today)"),
):
    """Lend a copy of a book to a member."""
    request = BorrowRequest(
        borrow_id=borrow_id,
        borrow_date=borrowed or date.today().isoformat(),
        due_date=due,
        member_id=member_id,
        staff_id=staff_id,
        book_id=book_id,
    )
    try:
        record = LibraryManager.get_instance().borrowing.create(request)
    except LibraryError as exc:
        _fail(exc)
    print_record(record.to_dict(), "Borrowing added successfully.")


@app.command("return")
def cli_return(borrow_id: int):
    """Mark a borrowing as returned and charge any late fine."""
    try:
        result = LibraryManager.get_instance().borrowing.return_borrowing(borrow_id)
    except LibraryError as exc:
        _fail(exc)
    record = result.record
    if result.changed:
        heading = f"Book returned successfully. Status: {record.status.value}, Fine: {record.fine_amount}"
    else:
        heading = "Return skipped: this borrowing is already closed."
    print_record(record.to_dict(), heading)


@app.command("delete-borrowing")
def cli_delete_borrowing(borrow_id: int):
    """Delete a returned borrowing record."""
    try:
        LibraryManager.get_instance().borrowing.delete(borrow_id)
    except LibraryError as exc:
        _fail(exc)
    print(f"Borrowing {borrow_id} deleted.")


@app.command("list")
def cli_list(overdue: bool = typer.Option(False, "--overdue", help="Only overdue records")):
    """List borrowing records, newest first."""
    try:
        rows = LibraryManager.get_instance().borrowing.list_borrowings(overdue_only=overdue)
    except LibraryError as exc:
        _fail(exc)
    print_borrowings(rows)


@app.command("overdue")
def cli_overdue():
    """List records unreturned past due, or returned late."""
    try:
        records = LibraryManager.get_instance().borrowing.list_overdue()
    except LibraryError as exc:
        _fail(exc)
    print_borrowings([r.to_dict() for r in records], title="Overdue")


@app.command("can-delete")
def cli_can_delete(kind: EntityKind, entity_id: int):
    """Check whether a book, member or staff row can be deleted."""
    try:
        allowed = LibraryManager.get_instance().guard.can_delete(kind, entity_id)
    except LibraryError as exc:
        _fail(exc)
    if allowed:
        print(f"{kind.value.capitalize()} {entity_id} can be deleted.")
    else:
        print(f"Cannot delete: this {kind.value} is linked to borrowing records.")


@app.command("export")
def cli_export(
    output: Path = typer.Option(Path("member_books_summary.csv"), "--file", "-f", help="Target CSV file"),
    member_id: Optional[int] = typer.Option(None, "--member"),
    status: Optional[str] = typer.Option(None, "--status"),
    overdue: bool = typer.Option(False, "--overdue"),
    query: str = typer.Option("", "--q", help="Search member name/email, book title/ISBN"),
):
    """Export the member/book borrowing summary to CSV."""
    flt = SummaryFilter(member_id=member_id, status=status, overdue_only=overdue, query=query)
    try:
        rows = member_book_summary(LibraryManager.get_instance().db, flt)
    except LibraryError as exc:
        _fail(exc)
    output.write_text(export_csv(rows), encoding="utf-8", newline="")
    print(f"Exported {len(rows)} row(s) to {output}")


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "unilib.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    env = {**os.environ, "LIBRARY_DB_FILE": LibraryManager._db_file}
    subprocess.run(args, env=env, check=False)


if __name__ == "__main__":
    app()
