from datetime import date

import pytest

from unilib.errors import ConflictError, ConstraintError, NotFoundError, ValidationError

from conftest import BOOK, MEMBER, STAFF, available, make_request


def _book(**overrides):
    data = dict(BOOK, book_id=2, isbn="9780099590088", title="Beloved", total_copies=2, available_copies=2)
    data.update(overrides)
    return data


def test_add_and_get_book(lib):
    book = lib.catalog.add_book(_book(isbn="978-0-09-959008-8", section="Fiction", row_number="4"))

    stored = lib.catalog.get_book(2)
    assert stored == book
    assert stored.isbn == "9780099590088"
    assert stored.row_number == 4
    assert stored.section == "Fiction"


@pytest.mark.parametrize(
    "overrides, constraint",
    [
        ({"book_id": 1}, "books.book_id"),
        ({"isbn": "9780199535675"}, "books.isbn"),
    ],
)
def test_duplicate_book_keys(seeded, overrides, constraint):
    with pytest.raises(ConflictError) as excinfo:
        seeded.catalog.add_book(_book(**overrides))
    assert excinfo.value.constraint == constraint


@pytest.mark.parametrize(
    "overrides",
    [
        {"isbn": "9780321765723"},
        {"title": "   "},
        {"total_copies": -1},
        {"available_copies": 3},
        {"book_id": "two"},
    ],
)
def test_invalid_books_rejected(lib, overrides):
    with pytest.raises(ValidationError):
        lib.catalog.add_book(_book(**overrides))
    assert lib.catalog.list_books() == []


def test_list_books_available_only(seeded):
    seeded.catalog.add_book(_book(title="Arcadia", available_copies=0))

    assert [b.book_id for b in seeded.catalog.list_books()] == [2, 1]
    assert [b.title for b in seeded.catalog.list_books(available_only=True)] == ["Ulysses"]


def test_total_copies_change_shifts_available(seeded):
    book = seeded.catalog.update_book(BOOK["book_id"], total_copies=5, author="J. Joyce")

    assert (book.total_copies, book.available_copies) == (5, 3)
    assert seeded.catalog.get_book(1).author == "J. Joyce"


def test_total_cannot_drop_below_copies_on_loan(seeded):
    with pytest.raises(ConstraintError) as excinfo:
        seeded.catalog.update_book(BOOK["book_id"], total_copies=1)

    assert excinfo.value.reason == ConstraintError.IN_USE
    assert available(seeded) == 1


def test_available_copies_is_not_editable(seeded):
    with pytest.raises(ValidationError):
        seeded.catalog.update_book(BOOK["book_id"], available_copies=3)


def test_isbn_update_checks_other_books(seeded):
    seeded.catalog.add_book(_book())

    with pytest.raises(ConflictError):
        seeded.catalog.update_book(2, isbn=BOOK["isbn"])
    # Re-saving its own ISBN is fine.
    assert seeded.catalog.update_book(2, isbn="9780099590088").isbn == "9780099590088"


def test_delete_unreferenced_book(seeded):
    seeded.catalog.delete_book(BOOK["book_id"])

    with pytest.raises(NotFoundError):
        seeded.catalog.get_book(BOOK["book_id"])


def test_delete_referenced_entities_refused(seeded):
    seeded.borrowing.create(make_request())
    seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 2))

    for delete, entity_id in (
        (seeded.catalog.delete_book, BOOK["book_id"]),
        (seeded.catalog.delete_member, MEMBER["member_id"]),
        (seeded.catalog.delete_staff, STAFF["staff_id"]),
    ):
        with pytest.raises(ConstraintError) as excinfo:
            delete(entity_id)
        assert excinfo.value.reason == ConstraintError.IN_USE

    assert seeded.catalog.get_member(MEMBER["member_id"]).full_name == "Ada Lovelace"


def test_store_foreign_keys_back_the_guard(seeded):
    seeded.borrowing.create(make_request())

    with pytest.raises(ConstraintError) as excinfo:
        with seeded.db.transaction() as conn:
            conn.execute("DELETE FROM members WHERE member_id = ?", (MEMBER["member_id"],))

    assert excinfo.value.reason == ConstraintError.IN_USE
    assert seeded.catalog.get_member(MEMBER["member_id"])


def test_delete_unknown_member(lib):
    with pytest.raises(NotFoundError):
        lib.catalog.delete_member(404)


def test_member_email_is_unique_and_normalized(seeded):
    with pytest.raises(ConflictError) as excinfo:
        seeded.catalog.add_member(dict(MEMBER, member_id=11, email="ADA@uni.edu"))
    assert excinfo.value.constraint == "members.email"

    with pytest.raises(ValidationError):
        seeded.catalog.add_member(dict(MEMBER, member_id=11, email="not-an-email"))


def test_update_member_keeps_unset_fields(seeded):
    member = seeded.catalog.update_member(MEMBER["member_id"], department="Mathematics", email=None)

    assert member.department == "Mathematics"
    assert member.email == MEMBER["email"]
    assert member.join_date == date(2023, 9, 1)


def test_list_members_counts_borrowings(seeded):
    seeded.catalog.add_member(dict(MEMBER, member_id=12, email="grace@uni.edu", full_name="Grace Hopper"))
    seeded.borrowing.create(make_request())

    counts = {m["member_id"]: m["total_borrowed"] for m in seeded.catalog.list_members()}

    assert counts == {10: 1, 12: 0}


def test_staff_crud(seeded):
    seeded.catalog.add_staff(dict(STAFF, staff_id=21, email="kim@uni.edu", hire_date=None))

    with pytest.raises(ConflictError) as excinfo:
        seeded.catalog.add_staff(dict(STAFF, staff_id=22))
    assert excinfo.value.constraint == "staff.email"

    updated = seeded.catalog.update_staff(21, shift="Evening")
    assert updated.shift == "Evening"
    assert updated.hire_date is None
    assert [s.staff_id for s in seeded.catalog.list_staff()] == [21, 20]

    seeded.catalog.delete_staff(21)
    with pytest.raises(NotFoundError):
        seeded.catalog.get_staff(21)
