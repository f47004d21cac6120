from __future__ import annotations

import io

import pytest

from pbap_vcard.cancel import CancellationToken
from pbap_vcard.exporter import ExportOrchestrator, ExportRequest, ExportState
from pbap_vcard.model import (
    CallLogEntry,
    Category,
    Contact,
    Outcome,
    Phone,
    VCardVersion,
    Window,
)
from pbap_vcard.schema import Base
from pbap_vcard.sink import BufferTransport
from pbap_vcard.store import SqliteRecordSource
from pbap_vcard.vcard_filter import mask_for

OWNER = "BEGIN:VCARD\r\nVERSION:3.0\r\nN:My Phone\r\nFN:My Phone\r\nEND:VCARD\r\n"


class _Tripwire(io.BytesIO):
    """Sets ``token`` on the ``after``-th write."""

    def __init__(self, token, after):
        super().__init__()
        self.token = token
        self.after = after
        self.writes = 0

    def write(self, data):
        self.writes += 1
        if self.writes == self.after:
            self.token.set()
        return super().write(data)


class _TripwireTransport(BufferTransport):
    def __init__(self, token, after):
        super().__init__()
        self.token = token
        self.after = after

    def open_output(self):
        self._buf = _Tripwire(self.token, self.after)
        return self._buf


class _BrokenStream(io.BytesIO):
    def write(self, data):
        raise OSError("link lost")


class _BrokenTransport(BufferTransport):
    def open_output(self):
        self._buf = _BrokenStream()
        return self._buf


def _export(source, category, window, transport=None, token=None, **kwargs):
    transport = transport or BufferTransport()
    result = ExportOrchestrator(source, transport, token).run(
        ExportRequest(category=category, window=window, **kwargs)
    )
    return result, transport


def _cards(text: str) -> list[str]:
    return [c for c in text.split("END:VCARD\n") if c]


def _values(text: str, tag: str) -> list[str]:
    return [line.split(":", 1)[1] for line in text.splitlines() if line.startswith(tag)]


# ── Windows ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("start,end", [(1, 5), (2, 4), (3, 3), (4, 99)])
def test_window_exports_exact_records(source, start, end):
    result, transport = _export(source, Category.PHONEBOOK, Window(start, end), version=VCardVersion.V30)
    names = ["Eve", "alice", "Dan", "Carol", "Bob"]
    expected = names[start - 1:min(end, len(names))]
    assert result.outcome is Outcome.SUCCESS
    assert result.records_written == len(expected)
    assert _values(transport.text, "FN") == expected
    assert transport.closed


def test_window_past_end_writes_nothing(source):
    result, transport = _export(source, Category.PHONEBOOK, Window(10, 20))
    assert result.ok
    assert result.records_written == 0
    assert transport.text == ""


def test_v21_name_and_phone_example():
    src = SqliteRecordSource()
    src.add_contact(Contact(display_name="Jane Doe", family="Doe", given="Jane",
                            phones=[Phone("(555) 010-0199")]))
    result, transport = _export(
        src, Category.PHONEBOOK, Window(1, 1),
        version=VCardVersion.V21, mask=mask_for(2, 7),
    )
    assert result.ok
    assert transport.text == "BEGIN:VCARD\nVERSION:2.1\nN:Doe;Jane;;;\nTEL;CELL:5550100199\nEND:VCARD\n"


def test_call_log_newest_first(source):
    result, transport = _export(source, Category.COMBINED, Window(1, 3))
    assert result.records_written == 3
    assert _values(transport.text, "TEL;VOICE") == ["5550100005", "5550100004", "5550100003"]
    cards = _cards(transport.text)
    assert "X-IRMC-CALL-DATETIME;MISSED:" in cards[0]
    assert "X-IRMC-CALL-DATETIME;DIALED:" in cards[1]


def test_owner_card_written_first(source):
    result, transport = _export(source, Category.PHONEBOOK, Window(1, 1), owner_vcard=OWNER)
    assert result.records_written == 1
    assert transport.text.startswith(OWNER)
    assert transport.text.count("BEGIN:VCARD") == 2


# ── Filtering ──────────────────────────────────────────────────────────────────

def test_ignore_filter_keeps_everything():
    src = SqliteRecordSource()
    src.add_contact(Contact(display_name="Jane Doe", emails=["jane@example.com"]))
    _, filtered = _export(src, Category.PHONEBOOK, Window(1, 1), mask=mask_for(0, 1, 2))
    _, unfiltered = _export(src, Category.PHONEBOOK, Window(1, 1), mask=mask_for(0, 1, 2), ignore_filter=True)
    assert "EMAIL" not in filtered.text
    assert "EMAIL;INTERNET:jane@example.com" in unfiltered.text


def test_photo_follows_mask():
    src = SqliteRecordSource()
    src.add_contact(Contact(display_name="Jane Doe", photo=b"\x00" * 30))
    _, without = _export(src, Category.PHONEBOOK, Window(1, 1), version=VCardVersion.V30, mask=mask_for(0, 1, 2))
    _, with_photo = _export(src, Category.PHONEBOOK, Window(1, 1), version=VCardVersion.V30, mask=mask_for(0, 1, 2, 3))
    assert "PHOTO" not in without.text
    assert "PHOTO;ENCODING=b;TYPE=JPEG:" in with_photo.text


def test_unicode_line_separator_stays_in_value():
    src = SqliteRecordSource()
    src.add_contact(Contact(display_name="Ann", note="first\u2028second"))
    _, transport = _export(src, Category.PHONEBOOK, Window(1, 1), version=VCardVersion.V30, ignore_filter=True)
    lines = transport.text.split("\n")
    assert "NOTE:first\u2028second" in lines
    assert "second" not in lines


# ── Failures ───────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("window,mask", [(Window(0, 2), None), (Window(3, 1), None), (Window(1, 2), b"\xff")])
def test_bad_request_is_rejected_before_output(source, window, mask):
    result, transport = _export(source, Category.PHONEBOOK, window, mask=mask)
    assert result.outcome is Outcome.INTERNAL_ERROR
    assert result.rejected
    assert result.records_written == 0
    assert not transport.closed


def test_store_unavailable():
    src = SqliteRecordSource()
    Base.metadata.drop_all(src.engine)
    result, _ = _export(src, Category.PHONEBOOK, Window(1, 5))
    assert result.outcome is Outcome.INTERNAL_ERROR
    assert not result.rejected


def test_encoding_failure_halts_export():
    src = SqliteRecordSource()
    src.add_contact(Contact(display_name="Jane Doe"))
    src.add_contact(Contact())
    src.add_contact(Contact(display_name="Bob"))
    result, transport = _export(src, Category.PHONEBOOK, Window(1, 3))
    assert result.outcome is Outcome.INTERNAL_ERROR
    assert result.records_written == 1
    assert "contact 2 has no data" in result.reason
    assert "Bob" not in transport.text
    assert transport.closed


def test_millisecond_call_timestamp_is_internal_error():
    src = SqliteRecordSource()
    src.add_call(CallLogEntry(number="5550100", timestamp=1_700_000_000_000))
    result, transport = _export(src, Category.COMBINED, Window(1, 1))
    assert result.outcome is Outcome.INTERNAL_ERROR
    assert not result.rejected
    assert result.records_written == 0
    assert "bad timestamp" in result.reason
    assert transport.closed


def test_write_failure(source):
    result, transport = _export(source, Category.PHONEBOOK, Window(1, 5), transport=_BrokenTransport())
    assert result.outcome is Outcome.INTERNAL_ERROR
    assert result.records_written == 0
    assert transport.closed


# ── Cancellation ───────────────────────────────────────────────────────────────

def test_preset_cancel_aborts_with_owner_only(source):
    token = CancellationToken()
    token.set()
    result, transport = _export(source, Category.PHONEBOOK, Window(1, 5), token=token, owner_vcard=OWNER)
    assert result.outcome is Outcome.ABORTED
    assert result.records_written == 0
    assert transport.text == OWNER
    assert transport.closed
    assert not token.is_set


def test_cancel_mid_stream(source):
    token = CancellationToken()
    transport = _TripwireTransport(token, after=2)
    result, _ = _export(source, Category.PHONEBOOK, Window(1, 5), transport=transport, token=token)
    assert result.outcome is Outcome.ABORTED
    assert result.records_written == 2
    assert transport.text.count("BEGIN:VCARD") == 2
    assert not token.is_set


def test_token_reusable_after_abort(source):
    token = CancellationToken()
    token.set()
    first, _ = _export(source, Category.PHONEBOOK, Window(1, 5), token=token)
    second, _ = _export(source, Category.PHONEBOOK, Window(1, 5), token=token)
    assert first.outcome is Outcome.ABORTED
    assert second.outcome is Outcome.SUCCESS
    assert second.records_written == 5


# ── Lifecycle ──────────────────────────────────────────────────────────────────

def test_orchestrator_is_single_use(source):
    orchestrator = ExportOrchestrator(source, BufferTransport())
    request = ExportRequest(category=Category.PHONEBOOK, window=Window(1, 1))
    assert orchestrator.run(request).ok
    assert orchestrator.state is ExportState.SUCCESS
    with pytest.raises(RuntimeError):
        orchestrator.run(request)
