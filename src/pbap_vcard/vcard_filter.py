"""Property filter applied to already-composed vCard text.

A peer sends a bit mask naming the vCard properties it wants. Bit ``b``
lives in byte ``mask[len(mask) - 1 - b // 8]`` at position ``b % 8``, so
the mask is big-endian with bit 0 in the last byte.

Filtering works on lines: a removed property takes its continuation lines
with it, i.e. every following line that does not start a recognised
property, up to (never including) the final line of the record.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from .errors import MalformedFilter

logger = logging.getLogger(__name__)


class Match(Enum):
    PREFIX = "prefix"        # line starts with the tag
    SUBSTRING = "substring"  # tag appears anywhere, case-insensitive


class OnV21(Enum):
    NORMAL = "normal"
    ONLY = "only"            # mask bit honoured for 2.1 output only
    SUPPRESS = "suppress"    # always removed from 2.1 output


@dataclass(frozen=True)
class PropertyRule:
    tag: str
    bit: int | None = None
    match: Match = Match.PREFIX
    always_suppressed: bool = False
    on_v21: OnV21 = OnV21.NORMAL


# Processing order matters: blanked lines extend later continuation scans.
RULES: tuple[PropertyRule, ...] = (
    PropertyRule("FN", bit=1, on_v21=OnV21.ONLY),   # FN is mandatory in 3.0
    PropertyRule("PHOTO", bit=3),
    PropertyRule("BDAY", bit=4),
    PropertyRule("ADR", bit=5),
    PropertyRule("EMAIL", bit=8),
    PropertyRule("TITLE", bit=12),
    PropertyRule("ORG", bit=16),
    PropertyRule("NOTE", bit=17),
    PropertyRule("NICKNAME", bit=23, on_v21=OnV21.SUPPRESS),
    PropertyRule("URL", bit=20),
    PropertyRule("IM", match=Match.SUBSTRING, always_suppressed=True),
    PropertyRule("SIP", match=Match.SUBSTRING, always_suppressed=True),
)

PHOTO_BIT = 3

# Lines starting with one of these begin a new property.
RECOGNISED_TAGS: tuple[str, ...] = (
    "N:", "TEL", "VERSION", "URL", "FN", "BDAY", "ADR", "EMAIL",
    "TITLE", "ORG", "NOTE", "NICKNAME", "PHOTO",
)


def check_bit(bit: int, mask: bytes) -> bool:
    """Return whether ``bit`` is set in ``mask``.

    Raises MalformedFilter when the mask has no byte for ``bit``.
    """
    index = len(mask) - 1 - bit // 8
    if index < 0:
        raise MalformedFilter(bit, len(mask))
    return bool((mask[index] >> (bit % 8)) & 0x01)


def parse_mask(text: str) -> bytes:
    """Parse a hex mask such as ``0x0000000000000085`` or ``85``."""
    text = text.strip().lower().removeprefix("0x").replace(" ", "")
    if len(text) % 2:
        text = "0" + text
    return bytes.fromhex(text)


def mask_for(*bits: int, length: int = 8) -> bytes:
    """Build a ``length`` byte mask with ``bits`` set."""
    value = 0
    for bit in bits:
        value |= 1 << bit
    return value.to_bytes(length, "big")


_LINE_BREAK = re.compile(r"\r\n|\n")


def split_lines(text: str) -> list[str]:
    """Split on CRLF or LF only; a trailing terminator adds no empty line."""
    lines = _LINE_BREAK.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _starts_property(line: str) -> bool:
    return line.startswith(RECOGNISED_TAGS)


class PropertyFilter:
    """Strip disallowed properties from composed vCards.

    With no mask set every property is allowed, except the ones that have
    no mask bit (instant messaging, SIP) and NICKNAME on 2.1.
    """

    def __init__(self, mask: bytes | None = None):
        self._allowed: dict[str, bool] = {r.tag: True for r in RULES if r.bit is not None}
        if mask is not None:
            self.set_mask(mask)

    def set_mask(self, mask: bytes) -> None:
        allowed = {}
        for rule in RULES:
            if rule.bit is not None:
                allowed[rule.tag] = check_bit(rule.bit, mask)
        self._allowed = allowed
        logger.debug("Filter mask %s allows %s", mask.hex(), sorted(t for t, ok in allowed.items() if ok))

    def is_allowed(self, tag: str) -> bool:
        return self._allowed.get(tag, False)

    def is_photo_included(self) -> bool:
        return self.is_allowed("PHOTO")

    def _removes(self, rule: PropertyRule, is_v21: bool) -> bool:
        if rule.always_suppressed:
            return True
        allowed = self.is_allowed(rule.tag)
        if rule.on_v21 is OnV21.ONLY:
            return not allowed and is_v21
        if rule.on_v21 is OnV21.SUPPRESS:
            return not allowed or is_v21
        return not allowed

    def apply(self, vcard: str, is_v21: bool) -> str:
        lines = split_lines(vcard)
        for rule in RULES:
            if not self._removes(rule, is_v21):
                continue
            if rule.match is Match.SUBSTRING:
                _blank_containing(lines, vcard, rule.tag)
            else:
                fold = rule.on_v21 is OnV21.SUPPRESS and is_v21
                _blank_property(lines, rule.tag, ignore_case=fold)
        filtered = "".join(f"{line}\n" for line in lines if line)
        logger.debug("vCard after filter: %r", filtered)
        return filtered


def _blank_property(lines: list[str], tag: str, ignore_case: bool = False) -> None:
    """Blank each ``tag`` line and its continuation lines, in place."""
    wanted = tag.upper() if ignore_case else tag
    last = len(lines) - 1
    for i, line in enumerate(lines):
        head = line.upper() if ignore_case else line
        if not head.startswith(wanted):
            continue
        lines[i] = ""
        for j in range(i + 1, last):
            if _starts_property(lines[j]):
                break
            lines[j] = ""


def _blank_containing(lines: list[str], vcard: str, marker: str) -> None:
    # Matches anywhere in the line, so unrelated text containing the
    # marker (a name like "Kim", "TIME") goes too.
    if marker not in vcard.upper():
        return
    for i, line in enumerate(lines):
        if marker in line.upper():
            lines[i] = ""
