"""Error taxonomy for the export engine.

None of these cross the exporter boundary: the orchestrator turns them into
an `ExportResult`, and the manager into a `ResponseCode`.
"""
from __future__ import annotations


class PbapError(Exception):
    """Base class for all export engine errors."""


class InvalidWindow(PbapError):
    """Ordinal window violates 1 <= start <= end."""

    def __init__(self, start: int, end: int):
        super().__init__(f"invalid window [{start}, {end}]")
        self.start = start
        self.end = end


class StoreUnavailable(PbapError):
    """The record source could not be queried."""


class EncodingFailed(PbapError):
    """A record could not be rendered as a vCard."""


class MalformedFilter(PbapError):
    """Filter mask too short to address a property bit."""

    def __init__(self, bit: int, length: int):
        super().__init__(f"filter of {length} byte(s) cannot address bit {bit}")
        self.bit = bit
        self.length = length
