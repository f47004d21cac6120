from __future__ import annotations

import pytest

from pbap_vcard.model import CallLogEntry, CallType, Contact, Phone
from pbap_vcard.store import SqliteRecordSource

# identity -> display name; alphabetical order is 2, 5, 4, 3, 1
NAMES = {1: "Eve", 2: "alice", 3: "Dan", 4: "Carol", 5: "Bob"}

# identity -> call type, oldest call first
CALLS = {
    1: CallType.MISSED,
    2: CallType.INCOMING,
    3: CallType.MISSED,
    4: CallType.OUTGOING,
    5: CallType.MISSED,
}


@pytest.fixture
def source():
    src = SqliteRecordSource(":memory:")
    for identity, name in NAMES.items():
        src.add_contact(Contact(
            identity=identity,
            display_name=name,
            given=name,
            phones=[Phone(f"+1 555 010 000{identity}")],
        ))
    for identity, call_type in CALLS.items():
        src.add_call(CallLogEntry(
            identity=identity,
            number=f"555010000{identity}",
            call_type=call_type,
            timestamp=1_700_000_000 + identity * 60,
        ))
    yield src
    src.close()
