from __future__ import annotations

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from datetime import datetime, UTC
from typing import Any

import vobject

from .errors import EncodingFailed, PbapError, StoreUnavailable
from .formatters import call_log_display_name, translate_pause_wait
from .model import (
    CallLogEntry,
    CallType,
    Contact,
    OrderKey,
    Phone,
    Presentation,
    Selection,
    VCardVersion,
)

logger = logging.getLogger(__name__)

CRLF = "\r\n"
_FOLD_WIDTH = 75

_CALL_DATETIME_TYPES = {
    CallType.MISSED: "MISSED",
    CallType.INCOMING: "RECEIVED",
    CallType.OUTGOING: "DIALED",
}


def _photo_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "PNG"
    if data.startswith(b"GIF8"):
        return "GIF"
    return "JPEG"


def _formatted_name(contact: Contact) -> str:
    parts = [contact.prefix, contact.given, contact.middle, contact.family, contact.suffix]
    return " ".join(p for p in parts if p)


def _call_stamp(entry: CallLogEntry) -> str:
    try:
        return datetime.fromtimestamp(entry.timestamp, UTC).strftime("%Y%m%dT%H%M%S")
    except (ValueError, OverflowError, OSError) as exc:
        raise EncodingFailed(f"call {entry.identity} has a bad timestamp {entry.timestamp}: {exc}") from exc


# ── vCard 2.1 ──────────────────────────────────────────────────────────────────
#
# vobject only writes 3.0, so 2.1 lines (quoted-printable values, bare type
# parameters) are assembled here.

def _escape_v21(value: str) -> str:
    return value.replace("\\", "\\\\").replace(";", "\\;")


def _needs_qp(value: str) -> bool:
    return "\n" in value or "\r" in value or not value.isascii()


class V21Builder:
    """Accumulate the lines of one vCard 2.1 record."""

    def __init__(self) -> None:
        self._lines: list[str] = ["BEGIN:VCARD", f"VERSION:{VCardVersion.V21.value}"]

    def add(self, name: str, value: str, params: str = "") -> V21Builder:
        """Add a text property, quoted-printable encoding it when needed."""
        if _needs_qp(value):
            qp = binascii.b2a_qp(value.encode("utf-8"), istext=False).decode("ascii")
            first, *rest = qp.split("\n")
            self._lines.append(f"{name}{params};ENCODING=QUOTED-PRINTABLE;CHARSET=UTF-8:{first}")
            self._lines.extend(rest)
            return self
        self._lines.append(f"{name}{params}:{_escape_v21(value)}")
        return self

    def add_structured(self, name: str, parts: list[str | None], params: str = "") -> V21Builder:
        value = ";".join(_escape_v21(p or "") for p in parts)
        if _needs_qp(value):
            return self.add(name, ";".join(p or "" for p in parts), params)
        self._lines.append(f"{name}{params}:{value}")
        return self

    def add_phone(self, phone: Phone) -> V21Builder:
        self._lines.append(f"TEL;{phone.kind.upper()}:{translate_pause_wait(phone.number)}")
        return self

    def add_photo(self, data: bytes) -> V21Builder:
        encoded = base64.b64encode(data).decode("ascii")
        head = f"PHOTO;ENCODING=BASE64;{_photo_type(data)}:"
        first = _FOLD_WIDTH - len(head)
        self._lines.append(head + encoded[:first])
        rest = encoded[first:]
        step = _FOLD_WIDTH - 1
        self._lines.extend(" " + rest[i:i + step] for i in range(0, len(rest), step))
        self._lines.append("")
        return self

    def add_raw(self, line: str) -> V21Builder:
        self._lines.append(line)
        return self

    def build(self) -> str:
        return CRLF.join(self._lines + ["END:VCARD"]) + CRLF


def _contact_v21(contact: Contact, include_photo: bool) -> str:
    b = V21Builder()
    b.add_structured("N", [contact.family, contact.given, contact.middle, contact.prefix, contact.suffix])
    b.add("FN", contact.display_name or _formatted_name(contact))
    if contact.nickname:
        b.add("NICKNAME", contact.nickname)
    for phone in contact.phones:
        b.add_phone(phone)
    for email in contact.emails:
        b.add("EMAIL", email, ";INTERNET")
    for adr in contact.addresses:
        b.add_structured("ADR", [
            adr.po_box, adr.extended, adr.street, adr.locality,
            adr.region, adr.postal_code, adr.country,
        ], f";{adr.kind.upper()}")
    if contact.org:
        b.add("ORG", contact.org)
    if contact.title:
        b.add("TITLE", contact.title)
    for uri in contact.ims:
        b.add_raw(f"IMPP:{uri}")
    for uri in contact.sips:
        b.add_raw(f"X-SIP:{uri}")
    for url in contact.urls:
        b.add_raw(f"URL:{url}")
    if contact.note:
        b.add("NOTE", contact.note)
    if contact.bday:
        b.add_raw(f"BDAY:{contact.bday}")
    if include_photo and contact.photo:
        b.add_photo(contact.photo)
    return b.build()


# ── vCard 3.0 ──────────────────────────────────────────────────────────────────

def _add(v, name: str, value: Any, type_param: str | None = None):
    it = v.add(name)
    it.value = value
    if type_param:
        it.type_param = type_param
    return it


def _new_card():
    v = vobject.vCard()
    v.add("version")
    v.version.value = VCardVersion.V30.value
    return v


def _contact_v30(contact: Contact, include_photo: bool) -> str:
    v = _new_card()
    _add(v, "n", vobject.vcard.Name(
        family=contact.family or "",
        given=contact.given or "",
        additional=contact.middle or "",
        prefix=contact.prefix or "",
        suffix=contact.suffix or "",
    ))
    _add(v, "fn", contact.display_name or _formatted_name(contact))
    if contact.nickname:
        _add(v, "nickname", contact.nickname)
    for phone in contact.phones:
        _add(v, "tel", translate_pause_wait(phone.number), phone.kind.upper())
    for email in contact.emails:
        _add(v, "email", email, "INTERNET")
    for adr in contact.addresses:
        _add(v, "adr", vobject.vcard.Address(
            street=adr.street or "",
            city=adr.locality or "",
            region=adr.region or "",
            code=adr.postal_code or "",
            country=adr.country or "",
            box=adr.po_box or "",
            extended=adr.extended or "",
        ), adr.kind.upper())
    if contact.org:
        _add(v, "org", [contact.org])
    if contact.title:
        _add(v, "title", contact.title)
    for uri in contact.ims:
        _add(v, "impp", uri)
    for uri in contact.sips:
        _add(v, "x-sip", uri)
    for url in contact.urls:
        _add(v, "url", url)
    if contact.note:
        _add(v, "note", contact.note)
    if contact.bday:
        _add(v, "bday", contact.bday)
    if include_photo and contact.photo:
        it = _add(v, "photo", contact.photo, _photo_type(contact.photo))
        it.encoding_param = "b"
    return v.serialize()


def _named_v30(name: str) -> Any:
    v = _new_card()
    _add(v, "n", vobject.vcard.Name(family=name))
    _add(v, "fn", name)
    return v


# ── Record rendering ───────────────────────────────────────────────────────────

def compose_contact(contact: Contact, version: VCardVersion, include_photo: bool = True) -> str:
    """Render one contact. Raises EncodingFailed when there is nothing to render."""
    if not contact.has_data:
        raise EncodingFailed(f"contact {contact.identity} has no data")
    if version.is_v21:
        return _contact_v21(contact, include_photo)
    return _contact_v30(contact, include_photo)


def compose_call_entry(entry: CallLogEntry, version: VCardVersion, unknown_number: str) -> str:
    name = call_log_display_name(entry, unknown_number)
    stamp = _call_stamp(entry)
    kind = _CALL_DATETIME_TYPES.get(entry.call_type)
    show_number = entry.presentation is Presentation.ALLOWED and entry.number

    if version.is_v21:
        b = V21Builder()
        b.add("N", name)
        b.add("FN", name)
        if show_number:
            b.add_phone(Phone(entry.number, "VOICE"))
        if kind:
            b.add_raw(f"X-IRMC-CALL-DATETIME;{kind}:{stamp}")
        return b.build()

    v = _named_v30(name)
    if show_number:
        _add(v, "tel", translate_pause_wait(entry.number), "VOICE")
    if kind:
        _add(v, "x-irmc-call-datetime", stamp, kind)
    return v.serialize()


def compose_owner_number_vcard(name: str, number: str, version: VCardVersion) -> str:
    """Minimal owner card: the local phone name and its mobile number."""
    if version.is_v21:
        b = V21Builder()
        b.add("N", name)
        b.add("FN", name)
        if number:
            b.add_phone(Phone(number, "CELL"))
        return b.build()
    v = _named_v30(name)
    if number:
        _add(v, "tel", translate_pause_wait(number), "CELL")
    return v.serialize()


# ── Composers ──────────────────────────────────────────────────────────────────

_UNREAD = object()
_END = object()
_BROKEN = object()


class RecordComposer(ABC):
    """Pull records for a selection and render them one at a time."""

    def __init__(self, source: Any, version: VCardVersion):
        self.source = source
        self.version = version
        self._cursor = None
        self._pending: Any = _UNREAD
        self._error_reason: str | None = None

    @property
    def error_reason(self) -> str | None:
        return self._error_reason

    def init(self, selection: Selection, order: OrderKey) -> bool:
        try:
            self._cursor = self.source.query(selection, order)
        except StoreUnavailable as exc:
            self._error_reason = str(exc)
            logger.error("Composer init failed: %s", exc)
            return False
        return True

    def has_more(self) -> bool:
        if self._cursor is None:
            return False
        if self._pending is _UNREAD:
            try:
                self._pending = next(self._cursor, _END)
            except PbapError as exc:
                self._error_reason = str(exc)
                self._pending = _BROKEN
        return self._pending is not _END

    def create_one_entry(self) -> str | None:
        """Return the next encoded record, or None with `error_reason` set."""
        if not self.has_more():
            self._error_reason = "no more records"
            return None
        record, self._pending = self._pending, _UNREAD
        if record is _BROKEN:
            return None
        try:
            return self._render(record)
        except EncodingFailed as exc:
            self._error_reason = str(exc)
        except Exception as exc:
            logger.exception("Unexpected error rendering record")
            self._error_reason = str(EncodingFailed(f"cannot render record: {exc}"))
        return None

    def terminate(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None

    @abstractmethod
    def _render(self, record: Any) -> str:
        ...


class ContactComposer(RecordComposer):
    def __init__(self, source: Any, version: VCardVersion, include_photo: bool = True):
        super().__init__(source, version)
        self.include_photo = include_photo

    def _render(self, record: Contact) -> str:
        return compose_contact(record, self.version, self.include_photo)


class CallLogComposer(RecordComposer):
    def __init__(self, source: Any, version: VCardVersion, unknown_number: str = "Unknown"):
        super().__init__(source, version)
        self.unknown_number = unknown_number

    def _render(self, record: CallLogEntry) -> str:
        return compose_call_entry(record, self.version, self.unknown_number)
