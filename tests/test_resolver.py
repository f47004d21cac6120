from __future__ import annotations

import pytest

from pbap_vcard.errors import InvalidWindow
from pbap_vcard.model import Category, Contact, OrderKey, RecordHandle, Selection, Window
from pbap_vcard.resolver import RangeResolver


class _ExplodingSource:
    def open_ordered(self, category, order):
        raise AssertionError("store touched")

    def query(self, selection, order):
        raise AssertionError("store touched")


def _ids(source, selection, order=OrderKey.INDEXED):
    cursor = source.query(selection, order)
    try:
        return [record.identity for record in cursor]
    finally:
        cursor.close()


# ── Contacts ───────────────────────────────────────────────────────────────────

def test_indexed_window_is_identity_range(source):
    selection = RangeResolver(source).resolve(Category.PHONEBOOK, Window(2, 4))
    assert selection == Selection.between(Category.PHONEBOOK, 2, 4)
    assert _ids(source, selection) == [2, 3, 4]


def test_single_record_window_is_equality(source):
    selection = RangeResolver(source).resolve(Category.PHONEBOOK, Window(3, 3))
    assert selection.is_equality
    assert selection.low == 3


def test_alphabetical_window_is_identity_set(source):
    selection = RangeResolver(source).resolve(Category.PHONEBOOK, Window(2, 4), OrderKey.ALPHABETICAL)
    assert selection.identities == (5, 4, 3)
    assert _ids(source, selection, OrderKey.ALPHABETICAL) == [5, 4, 3]


def test_end_past_collection_is_clamped(source):
    selection = RangeResolver(source).resolve(Category.PHONEBOOK, Window(4, 65535))
    assert selection == Selection.between(Category.PHONEBOOK, 4, 5)


def test_start_past_collection_selects_nothing(source):
    selection = RangeResolver(source).resolve(Category.PHONEBOOK, Window(6, 10))
    assert selection.identities == ()
    assert _ids(source, selection) == []


def test_hidden_contacts_are_skipped(source):
    source.add_contact(Contact(identity=6, display_name="Ghost", visible=False))
    source.add_contact(Contact(identity=7, display_name="Fay"))
    selection = RangeResolver(source).resolve(Category.PHONEBOOK, Window(5, 6))
    assert selection == Selection.between(Category.PHONEBOOK, 5, 7)
    assert _ids(source, selection) == [5, 7]


def test_handles_carry_ordinals(source):
    handles = RangeResolver(source).handles(Category.PHONEBOOK, Window(1, 3), OrderKey.ALPHABETICAL)
    assert handles == [RecordHandle(2, 1), RecordHandle(5, 2), RecordHandle(4, 3)]


# ── Call history ───────────────────────────────────────────────────────────────

def test_call_log_window_is_inverted(source):
    # Ordinal 1 is the newest call, so [1, 3] covers identities 5, 4, 3.
    selection = RangeResolver(source).resolve(Category.COMBINED, Window(1, 3))
    assert (selection.low, selection.high) == (3, 5)
    assert _ids(source, selection, OrderKey.NEWEST_FIRST) == [5, 4, 3]


def test_call_log_ignores_requested_order(source):
    resolver = RangeResolver(source)
    assert resolver.resolve(Category.COMBINED, Window(1, 2), OrderKey.ALPHABETICAL) == \
        resolver.resolve(Category.COMBINED, Window(1, 2))


def test_missed_calls_only(source):
    selection = RangeResolver(source).resolve(Category.MISSED, Window(1, 2))
    assert (selection.low, selection.high) == (3, 5)
    assert _ids(source, selection, OrderKey.NEWEST_FIRST) == [5, 3]


def test_oldest_call_alone(source):
    selection = RangeResolver(source).resolve(Category.COMBINED, Window(5, 9))
    assert selection == Selection.only(Category.COMBINED, 1)


# ── Invalid windows ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("start,end", [(0, 3), (5, 2), (-1, -1)])
def test_invalid_window_never_reaches_store(start, end):
    with pytest.raises(InvalidWindow):
        RangeResolver(_ExplodingSource()).resolve(Category.PHONEBOOK, Window(start, end))
