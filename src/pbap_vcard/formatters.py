from __future__ import annotations

import logging

import phonenumbers
from phonenumbers import MatchType, NumberParseException

from .model import CallLogEntry, Presentation
from .vcard_filter import split_lines

logger = logging.getLogger(__name__)

# ── Dial-string control characters ─────────────────────────────────────────────

# Dialer pause and wait markers, emitted as the RFC 3601 characters.
PAUSE = ","
WAIT = ";"


def translate_pause_wait(number: str) -> str:
    """Rewrite pause/wait markers to 'p' and 'w'. Nothing else is touched."""
    return number.replace(PAUSE, "p").replace(WAIT, "w")


# ── TEL line noise ─────────────────────────────────────────────────────────────

_TEL_NOISE = str.maketrans("", "", "()- ")


def strip_telephone_number(vcard: str) -> str:
    """Drop '(', ')', '-' and ' ' from every TEL line and remove empty lines.

    Output lines are each terminated by a single newline.
    """
    out: list[str] = []
    for line in split_lines(vcard):
        if line.startswith("TEL"):
            line = line.translate(_TEL_NOISE)
        if line:
            out.append(line)
    stripped = "".join(f"{line}\n" for line in out)
    logger.debug("vCard with stripped telephone numbers: %r", stripped)
    return stripped


# ── Number lookup ──────────────────────────────────────────────────────────────

_MATCHING = (MatchType.EXACT_MATCH, MatchType.NSN_MATCH)


def numbers_match(a: str, b: str) -> bool:
    """True when two dialable numbers designate the same line.

    Formatting is ignored; a number written with and without its country
    code still matches. Short or partial numbers do not.
    """
    da = phonenumbers.normalize_digits_only(a)
    db = phonenumbers.normalize_digits_only(b)
    if not da or not db:
        return False
    if da == db:
        return True
    try:
        return phonenumbers.is_number_match(a, b) in _MATCHING
    except NumberParseException:
        return False


# ── Call-log names ─────────────────────────────────────────────────────────────

def call_log_display_name(entry: CallLogEntry, unknown_number: str) -> str:
    """Name shown for a call-log entry; never empty."""
    if entry.cached_name:
        return entry.cached_name
    if entry.presentation is Presentation.ALLOWED and entry.number:
        return entry.number
    return unknown_number
