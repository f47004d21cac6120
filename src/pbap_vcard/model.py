from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class Category(Enum):
    PHONEBOOK = "pb"
    INCOMING = "ich"
    OUTGOING = "och"
    MISSED = "mch"
    COMBINED = "cch"

    @property
    def is_call_history(self) -> bool:
        return self is not Category.PHONEBOOK

    @property
    def call_type(self) -> int | None:
        """Call-log type column value selected by this category, if any."""
        return _CALL_TYPES.get(self)


class OrderKey(Enum):
    INDEXED = "indexed"            # identity ascending
    ALPHABETICAL = "alphabetical"  # display name ascending
    NEWEST_FIRST = "newest"        # identity descending (call log)


class CallType(IntEnum):
    INCOMING = 1
    OUTGOING = 2
    MISSED = 3


_CALL_TYPES = {
    Category.INCOMING: int(CallType.INCOMING),
    Category.OUTGOING: int(CallType.OUTGOING),
    Category.MISSED: int(CallType.MISSED),
}


class Presentation(IntEnum):
    ALLOWED = 1
    RESTRICTED = 2
    UNKNOWN = 3
    PAYPHONE = 4


class Outcome(Enum):
    SUCCESS = "success"
    INTERNAL_ERROR = "internal-error"
    ABORTED = "aborted"


class ResponseCode(IntEnum):
    """OBEX response codes surfaced to the surrounding service."""
    OK = 0xA0
    BAD_REQUEST = 0xC0
    INTERNAL_ERROR = 0xD0


class VCardVersion(Enum):
    V21 = "2.1"
    V30 = "3.0"

    @property
    def is_v21(self) -> bool:
        return self is VCardVersion.V21


# ── Records ────────────────────────────────────────────────────────────────────

@dataclass
class Address:
    po_box: str | None = None
    extended: str | None = None
    street: str | None = None
    locality: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country: str | None = None
    kind: str = "HOME"


@dataclass
class Phone:
    number: str
    kind: str = "CELL"   # CELL | HOME | WORK | FAX | VOICE


@dataclass
class Contact:
    identity: int = 0
    display_name: str | None = None
    family: str | None = None
    given: str | None = None
    middle: str | None = None
    prefix: str | None = None
    suffix: str | None = None
    nickname: str | None = None
    phones: list[Phone] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    addresses: list[Address] = field(default_factory=list)
    org: str | None = None
    title: str | None = None
    note: str | None = None
    bday: str | None = None
    urls: list[str] = field(default_factory=list)
    ims: list[str] = field(default_factory=list)     # URIs, e.g. xmpp:alice@example.org
    sips: list[str] = field(default_factory=list)
    photo: bytes | None = None
    visible: bool = True

    @property
    def has_data(self) -> bool:
        return bool(
            self.display_name or self.family or self.given or self.nickname
            or self.phones or self.emails or self.addresses or self.org
            or self.title or self.note or self.bday or self.urls
            or self.ims or self.sips or self.photo
        )


@dataclass
class CallLogEntry:
    identity: int = 0
    number: str | None = None
    cached_name: str | None = None
    presentation: Presentation = Presentation.ALLOWED
    call_type: CallType = CallType.INCOMING
    timestamp: int = 0   # seconds since the epoch, UTC


# ── Selection ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Window:
    """1-based inclusive ordinal window."""
    start: int
    end: int

    @property
    def is_valid(self) -> bool:
        return 1 <= self.start <= self.end


@dataclass(frozen=True)
class RecordHandle:
    identity: int
    ordinal: int


@dataclass(frozen=True)
class Selection:
    """Records of one category picked by identity range or identity set."""
    category: Category
    low: int | None = None
    high: int | None = None
    identities: tuple[int, ...] | None = None

    @classmethod
    def between(cls, category: Category, low: int, high: int) -> Selection:
        return cls(category, low=low, high=high)

    @classmethod
    def only(cls, category: Category, identity: int) -> Selection:
        return cls(category, low=identity, high=identity)

    @classmethod
    def of(cls, category: Category, identities) -> Selection:
        return cls(category, identities=tuple(identities))

    @classmethod
    def empty(cls, category: Category) -> Selection:
        return cls(category, identities=())

    @classmethod
    def all(cls, category: Category) -> Selection:
        return cls(category)

    @property
    def is_all(self) -> bool:
        return self.identities is None and self.low is None

    @property
    def is_equality(self) -> bool:
        return self.identities is None and self.low is not None and self.low == self.high


@dataclass
class ExportResult:
    outcome: Outcome
    records_written: int = 0
    reason: str | None = None
    rejected: bool = False   # request refused before the store was touched

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


def effective_order(category: Category, order: OrderKey) -> OrderKey:
    """Call history is always newest first; contacts never are."""
    if category.is_call_history:
        return OrderKey.NEWEST_FIRST
    if order is OrderKey.NEWEST_FIRST:
        return OrderKey.INDEXED
    return order
