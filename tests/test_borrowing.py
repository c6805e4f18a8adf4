from datetime import date, datetime
from decimal import Decimal

import pytest

from unilib.borrowing import BorrowRequest
from unilib.errors import (
    ConflictError,
    ConstraintError,
    NotFoundError,
    StorageError,
    UnavailableError,
    ValidationError,
)
from unilib.models import BorrowStatus

from conftest import BOOK, available, make_request


def _borrow_count(lib):
    with lib.db.transaction(write=False) as conn:
        return conn.execute("SELECT COUNT(*) FROM borrowings").fetchone()[0]


def test_create_reserves_a_copy(seeded):
    record = seeded.borrowing.create(make_request())

    assert record.status is BorrowStatus.BORROWED
    assert record.fine_amount == Decimal("0.00")
    assert record.return_date is None
    assert available(seeded) == 0
    assert seeded.borrowing.get(7001) == record


def test_second_borrow_of_last_copy_is_unavailable(seeded):
    seeded.borrowing.create(make_request(7000))

    with pytest.raises(UnavailableError) as excinfo:
        seeded.borrowing.create(make_request(7001))

    assert isinstance(excinfo.value, ConstraintError)
    assert excinfo.value.reason == ConstraintError.UNAVAILABLE
    assert available(seeded) == 0
    assert _borrow_count(seeded) == 1


def test_late_return_charges_fine_and_releases_copy(seeded):
    seeded.borrowing.create(make_request())

    result = seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 15))

    assert result.changed is True
    assert result.late_days == 5
    assert result.record.status is BorrowStatus.OVERDUE
    assert result.record.fine_amount == Decimal("10.00")
    assert result.record.return_date == date(2024, 1, 15)
    assert available(seeded) == 1
    assert seeded.borrowing.get(7001).fine_amount == Decimal("10.00")


def test_repeat_return_is_a_no_op(seeded):
    seeded.borrowing.create(make_request())
    first = seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 15))

    second = seeded.borrowing.return_borrowing(7001, today=date(2024, 2, 20))

    assert second.changed is False
    assert second.record == first.record
    assert seeded.borrowing.get(7001) == first.record
    assert available(seeded) == 1


def test_returned_status_is_terminal_too(seeded):
    seeded.borrowing.create(make_request())
    seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 10))

    again = seeded.borrowing.return_borrowing(7001, today=date(2024, 3, 1))

    assert again.changed is False
    assert again.record.status is BorrowStatus.RETURNED
    assert again.record.fine_amount == Decimal("0.00")
    assert available(seeded) == 1


def test_duplicate_borrow_id_conflicts_without_touching_inventory(seeded):
    seeded.borrowing.create(make_request())
    seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 15))

    with pytest.raises(ConflictError) as excinfo:
        seeded.borrowing.create(make_request(7001))

    assert excinfo.value.constraint == "borrowings.borrow_id"
    assert available(seeded) == 1


def test_delete_refused_for_overdue_record(seeded):
    seeded.borrowing.create(make_request())
    seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 15))

    with pytest.raises(ConstraintError) as excinfo:
        seeded.borrowing.delete(7001)

    assert excinfo.value.reason == ConstraintError.NOT_RETURNED
    assert seeded.borrowing.get(7001).status is BorrowStatus.OVERDUE


def test_delete_refused_for_open_record(seeded):
    seeded.borrowing.create(make_request())

    with pytest.raises(ConstraintError):
        seeded.borrowing.delete(7001)
    assert available(seeded) == 0


def test_book_with_open_borrowing_cannot_be_deleted(seeded):
    seeded.borrowing.create(make_request())

    assert seeded.guard.can_delete_book(BOOK["book_id"]) is False


def test_round_trip_on_due_date_restores_inventory(seeded):
    before = available(seeded)
    seeded.borrowing.create(make_request())

    result = seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 10))

    assert result.record.status is BorrowStatus.RETURNED
    assert result.record.fine_amount == Decimal("0.00")
    assert available(seeded) == before


def test_delete_returned_record_leaves_inventory(seeded):
    seeded.borrowing.create(make_request())
    seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 9))

    seeded.borrowing.delete(7001)

    assert available(seeded) == 1
    with pytest.raises(NotFoundError):
        seeded.borrowing.get(7001)


def test_unknown_ids(seeded):
    with pytest.raises(NotFoundError):
        seeded.borrowing.return_borrowing(404, today=date(2024, 1, 1))
    with pytest.raises(NotFoundError):
        seeded.borrowing.delete(404)


@pytest.mark.parametrize(
    "overrides",
    [
        {"borrow_id": None},
        {"book_id": ""},
        {"due_date": "2023-12-31"},
        {"borrow_date": "not-a-date"},
        {"member_id": -3},
    ],
)
def test_invalid_requests_rejected_before_any_change(seeded, overrides):
    with pytest.raises(ValidationError):
        seeded.borrowing.create(make_request(**overrides))
    assert available(seeded) == 1
    assert _borrow_count(seeded) == 0


def test_request_from_raw_form_values():
    request = BorrowRequest.from_mapping(
        {"borrow_id": " 7001 ", "borrow_date": "2024-01-01", "due_date": "2024-01-01",
         "member_id": "10", "staff_id": "20", "book_id": "1"}
    ).validate()
    assert request.borrow_id == 7001
    assert request.due_date == request.borrow_date == date(2024, 1, 1)


@pytest.mark.parametrize("overrides", [{"book_id": 99}, {"member_id": 99}, {"staff_id": 99}])
def test_missing_referenced_rows(seeded, overrides):
    with pytest.raises(ConstraintError) as excinfo:
        seeded.borrowing.create(make_request(**overrides))
    assert excinfo.value.reason == ConstraintError.NOT_FOUND
    assert available(seeded) == 1


def test_failed_insert_undoes_reservation(seeded, monkeypatch):
    def broken_insert(conn, record):
        raise StorageError("disk full")

    monkeypatch.setattr("unilib.borrowing.BorrowingRegistry._insert", staticmethod(broken_insert))

    with pytest.raises(StorageError):
        seeded.borrowing.create(make_request())
    assert available(seeded) == 1
    assert _borrow_count(seeded) == 0


def test_failed_release_keeps_record_open(seeded, monkeypatch):
    seeded.borrowing.create(make_request())

    def broken_release(conn, book_id):
        raise StorageError("connection lost")

    monkeypatch.setattr("unilib.inventory.release", broken_release)

    with pytest.raises(StorageError):
        seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 15))
    record = seeded.borrowing.get(7001)
    assert record.status is BorrowStatus.BORROWED
    assert record.fine_amount == Decimal("0.00")
    assert available(seeded) == 0


def test_list_overdue_covers_both_meanings(seeded):
    seeded.catalog.update_book(BOOK["book_id"], total_copies=6)  # 4 on the shelf
    seeded.borrowing.create(make_request(1, date(2024, 1, 1), date(2024, 1, 10)))  # open, past due
    seeded.borrowing.create(make_request(2, date(2024, 1, 1), date(2024, 1, 10)))  # returned late
    seeded.borrowing.create(make_request(3, date(2024, 1, 1), date(2024, 1, 10)))  # returned on time
    seeded.borrowing.create(make_request(4, date(2024, 1, 1), date(2024, 3, 1)))  # open, not due yet
    seeded.borrowing.return_borrowing(2, today=date(2024, 1, 12))
    seeded.borrowing.return_borrowing(3, today=date(2024, 1, 9))

    overdue = seeded.borrowing.list_overdue(today=date(2024, 2, 1))

    assert [r.borrow_id for r in overdue] == [2, 1]
    assert overdue[1].status is BorrowStatus.BORROWED


def test_listing_includes_names(seeded):
    seeded.borrowing.create(make_request())

    rows = seeded.borrowing.list_borrowings()

    assert rows[0]["member_name"] == "Ada Lovelace"
    assert rows[0]["staff_name"] == "Sam Clerk"
    assert rows[0]["book_title"] == "Ulysses"
    assert seeded.borrowing.list_borrowings(overdue_only=True, today=date(2024, 1, 5)) == []


def test_record_overdue_flag(seeded):
    record = seeded.borrowing.create(make_request())

    assert record.is_overdue(date(2024, 1, 10)) is False
    assert record.is_overdue(date(2024, 1, 11)) is True

    returned = seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 12)).record
    assert returned.is_overdue(date(2030, 1, 1)) is True


def test_datetime_inputs_are_stored_as_dates(seeded):
    seeded.borrowing.create(
        make_request(borrow_date=datetime(2024, 1, 1, 9, 30), due_date=datetime(2024, 1, 10, 9, 30))
    )

    record = seeded.borrowing.get(7001)
    assert (record.borrow_date, record.due_date) == (date(2024, 1, 1), date(2024, 1, 10))
    assert [r["borrow_date"] for r in seeded.borrowing.list_borrowings()] == ["2024-01-01"]
    assert [r.borrow_id for r in seeded.borrowing.list_overdue(today=datetime(2024, 2, 1, 8, 0))] == [7001]


def test_mixed_datetime_and_date_request(seeded):
    record = seeded.borrowing.create(make_request(borrow_date=datetime(2024, 1, 1, 17, 0)))
    assert record.borrow_date == date(2024, 1, 1)

    with pytest.raises(ValidationError):
        seeded.borrowing.create(make_request(7002, borrow_date=datetime(2024, 1, 11, 8, 0)))


def test_return_with_text_date(seeded):
    seeded.borrowing.create(make_request())

    result = seeded.borrowing.return_borrowing(7001, today="2024-01-15")

    assert result.record.return_date == date(2024, 1, 15)
    assert result.record.fine_amount == Decimal("10.00")
    assert seeded.borrowing.get(7001).return_date == date(2024, 1, 15)


def test_return_with_bad_text_date(seeded):
    seeded.borrowing.create(make_request())

    with pytest.raises(ValidationError):
        seeded.borrowing.return_borrowing(7001, today="15/01/2024")
    assert seeded.borrowing.get(7001).status is BorrowStatus.BORROWED
