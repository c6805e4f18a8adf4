import os
from datetime import date

import pytest

from unilib.borrowing import BorrowRequest
from unilib.library import Library
from unilib.ui_helpers import OUTPUT_MODE_ENV

BOOK = {
    "book_id": 1,
    "title": "Ulysses",
    "isbn": "9780199535675",
    "total_copies": 3,
    "available_copies": 1,
    "author": "James Joyce",
}
MEMBER = {
    "member_id": 10,
    "full_name": "Ada Lovelace",
    "email": "ada@uni.edu",
    "role": "Student",
    "join_date": "2023-09-01",
}
STAFF = {
    "staff_id": 20,
    "full_name": "Sam Clerk",
    "email": "sam@uni.edu",
    "shift": "Morning",
    "status": "Active",
    "hire_date": "2020-01-15",
}


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # CLI output mode lives in the environment; keep tests independent of each other
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


@pytest.fixture
def db_file(tmp_path, request):
    # A unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_file + suffix):
            os.remove(db_file + suffix)


@pytest.fixture
def seeded(lib):
    """Library with one book (3 copies, 1 on the shelf), one member and one staff member."""
    lib.catalog.add_book(BOOK)
    lib.catalog.add_member(MEMBER)
    lib.catalog.add_staff(STAFF)
    return lib


def make_request(borrow_id=7001, borrow_date=date(2024, 1, 1), due_date=date(2024, 1, 10), **overrides):
    data = {
        "borrow_id": borrow_id,
        "borrow_date": borrow_date,
        "due_date": due_date,
        "member_id": MEMBER["member_id"],
        "staff_id": STAFF["staff_id"],
        "book_id": BOOK["book_id"],
    }
    data.update(overrides)
    return BorrowRequest.from_mapping(data)


def available(lib, book_id=BOOK["book_id"]):
    return lib.catalog.get_book(book_id).available_copies
