from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any

from .model import (
    Address,
    CallLogEntry,
    CallType,
    Contact,
    Phone,
    Presentation,
)

logger = logging.getLogger(__name__)

# ── Seed documents ─────────────────────────────────────────────────────────────
#
# {"contacts": [{"display_name": "Jane Doe", "phones": [{"number": "+1 555 0100",
#                "kind": "CELL"}], "photo": "<base64>", ...}],
#  "calls":    [{"number": "+1 555 0100", "call_type": "missed",
#                "presentation": "allowed", "timestamp": 1700000000}]}


def _phone(item: Any) -> Phone:
    if isinstance(item, str):
        return Phone(item)
    return Phone(item["number"], item.get("kind", "CELL"))


def contact_from_dict(data: dict[str, Any]) -> Contact:
    photo = data.get("photo")
    return Contact(
        identity=int(data.get("id", 0)),
        display_name=data.get("display_name"),
        family=data.get("family"),
        given=data.get("given"),
        middle=data.get("middle"),
        prefix=data.get("prefix"),
        suffix=data.get("suffix"),
        nickname=data.get("nickname"),
        phones=[_phone(p) for p in data.get("phones", [])],
        emails=list(data.get("emails", [])),
        addresses=[Address(**a) for a in data.get("addresses", [])],
        org=data.get("org"),
        title=data.get("title"),
        note=data.get("note"),
        bday=data.get("bday"),
        urls=list(data.get("urls", [])),
        ims=list(data.get("ims", [])),
        sips=list(data.get("sips", [])),
        photo=base64.b64decode(photo) if photo else None,
        visible=bool(data.get("visible", True)),
    )


def call_from_dict(data: dict[str, Any]) -> CallLogEntry:
    return CallLogEntry(
        identity=int(data.get("id", 0)),
        number=data.get("number"),
        cached_name=data.get("cached_name"),
        presentation=Presentation[str(data.get("presentation", "allowed")).upper()],
        call_type=CallType[str(data.get("call_type", "incoming")).upper()],
        timestamp=int(data.get("timestamp", 0)),
    )


def read_seed_file(path: Path) -> tuple[list[Contact], list[CallLogEntry]]:
    """Parse a JSON seed document into contacts and call-log entries."""
    doc = json.loads(path.read_text(encoding="utf-8"))
    contacts = [contact_from_dict(c) for c in doc.get("contacts", [])]
    calls = [call_from_dict(c) for c in doc.get("calls", [])]
    logger.debug("%s: %d contact(s), %d call(s)", path.name, len(contacts), len(calls))
    return contacts, calls


def seed_store(source, path: Path) -> tuple[int, int]:
    """Load ``path`` into a SqliteRecordSource; returns (contacts, calls) added."""
    contacts, calls = read_seed_file(path)
    for contact in contacts:
        source.add_contact(contact)
    # Oldest first so identities grow with time.
    for call in sorted(calls, key=lambda c: c.timestamp):
        source.add_call(call)
    return len(contacts), len(calls)
