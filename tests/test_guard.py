from datetime import date

import pytest

from unilib.errors import NotFoundError, ValidationError
from unilib.guard import EntityKind

from conftest import BOOK, MEMBER, STAFF, make_request


def test_unreferenced_entities_can_be_deleted(seeded):
    assert seeded.guard.can_delete_book(BOOK["book_id"]) is True
    assert seeded.guard.can_delete_member(MEMBER["member_id"]) is True
    assert seeded.guard.can_delete_staff(STAFF["staff_id"]) is True


def test_borrowing_blocks_all_three(seeded):
    seeded.borrowing.create(make_request())

    for kind, entity_id in (
        (EntityKind.BOOK, BOOK["book_id"]),
        (EntityKind.MEMBER, MEMBER["member_id"]),
        (EntityKind.STAFF, STAFF["staff_id"]),
    ):
        assert seeded.guard.count_references(kind, entity_id) == 1
        assert seeded.guard.can_delete(kind, entity_id) is False


def test_returned_borrowings_still_count(seeded):
    seeded.borrowing.create(make_request())
    seeded.borrowing.return_borrowing(7001, today=date(2024, 1, 5))

    assert seeded.guard.can_delete_member(MEMBER["member_id"]) is False


def test_kind_accepts_plain_strings(seeded):
    assert seeded.guard.can_delete("book", str(BOOK["book_id"])) is True


def test_unknown_entity(seeded):
    with pytest.raises(NotFoundError) as excinfo:
        seeded.guard.can_delete_staff(999)
    assert excinfo.value.entity == "staff"


def test_bad_identifier(seeded):
    with pytest.raises(ValidationError):
        seeded.guard.can_delete_book("abc")
