from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum

from .cancel import CancellationToken
from .composer import CallLogComposer, ContactComposer, RecordComposer
from .errors import InvalidWindow, MalformedFilter, StoreUnavailable
from .formatters import strip_telephone_number
from .model import (
    Category,
    ExportResult,
    OrderKey,
    Outcome,
    VCardVersion,
    Window,
    effective_order,
)
from .resolver import RangeResolver
from .sink import StreamSink, Transport
from .store import RecordSource
from .vcard_filter import PropertyFilter

logger = logging.getLogger(__name__)


class ExportState(Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    COMPOSING = "composing"
    FILTERING = "filtering"
    WRITING = "writing"
    SUCCESS = "success"
    ABORTED = "aborted"
    INTERNAL_ERROR = "internal-error"


_TERMINAL = {
    Outcome.SUCCESS: ExportState.SUCCESS,
    Outcome.ABORTED: ExportState.ABORTED,
    Outcome.INTERNAL_ERROR: ExportState.INTERNAL_ERROR,
}


@dataclass
class ExportRequest:
    category: Category
    window: Window
    version: VCardVersion = VCardVersion.V21
    owner_vcard: str | None = None
    mask: bytes | None = None
    ignore_filter: bool = False
    order: OrderKey = OrderKey.INDEXED


class ExportOrchestrator:
    """Run one windowed export: resolve, compose, filter, write.

    Single use. Every failure ends the export; nothing is retried.
    """

    def __init__(
        self,
        source: RecordSource,
        transport: Transport,
        token: CancellationToken | None = None,
        *,
        include_photos: bool = True,
        unknown_number: str = "Unknown",
    ):
        self.source = source
        self.transport = transport
        self.token = token or CancellationToken()
        self.include_photos = include_photos
        self.unknown_number = unknown_number
        self.state = ExportState.IDLE
        self._written = 0

    def _enter(self, state: ExportState) -> None:
        logger.debug("Export %s -> %s", self.state.value, state.value)
        self.state = state

    def _finish(self, outcome: Outcome, reason: str | None = None, rejected: bool = False) -> ExportResult:
        self._enter(_TERMINAL[outcome])
        return ExportResult(outcome, self._written, reason, rejected)

    def _composer(self, request: ExportRequest, vfilter: PropertyFilter | None) -> RecordComposer:
        if request.category is Category.PHONEBOOK:
            photo = self.include_photos and (vfilter is None or vfilter.is_photo_included())
            return ContactComposer(self.source, request.version, include_photo=photo)
        return CallLogComposer(self.source, request.version, unknown_number=self.unknown_number)

    def run(self, request: ExportRequest) -> ExportResult:
        if self.state is not ExportState.IDLE:
            raise RuntimeError("ExportOrchestrator instances are single-use")
        started = time.monotonic()
        self._enter(ExportState.RESOLVING)

        try:
            vfilter = None if request.ignore_filter else PropertyFilter(request.mask)
            selection = RangeResolver(self.source).resolve(
                request.category, request.window, request.order
            )
        except (InvalidWindow, MalformedFilter) as exc:
            logger.error("Export request rejected: %s", exc)
            return self._finish(Outcome.INTERNAL_ERROR, str(exc), rejected=True)
        except StoreUnavailable as exc:
            return self._finish(Outcome.INTERNAL_ERROR, str(exc))

        order = effective_order(request.category, request.order)
        composer = self._composer(request, vfilter)
        if request.category.is_call_history:
            # Call-log cards carry no filterable properties, and the IM
            # marker rule would match X-IRMC-CALL-DATETIME.
            vfilter = None
        sink = StreamSink(self.transport, request.owner_vcard)
        self._enter(ExportState.COMPOSING)
        try:
            if not composer.init(selection, order):
                return self._finish(Outcome.INTERNAL_ERROR, composer.error_reason)
            if not sink.on_init():
                return self._finish(Outcome.INTERNAL_ERROR, "cannot open output stream")

            while True:
                if self.token.consume():
                    logger.info("Export aborted after %d record(s)", self._written)
                    return self._finish(Outcome.ABORTED)
                if not composer.has_more():
                    break
                vcard = composer.create_one_entry()
                if vcard is None:
                    logger.error("Failed to read a record. Error reason: %s", composer.error_reason)
                    return self._finish(Outcome.INTERNAL_ERROR, composer.error_reason)
                logger.debug("vCard from composer: %r", vcard)

                self._enter(ExportState.FILTERING)
                if vfilter is not None:
                    vcard = vfilter.apply(vcard, request.version.is_v21)
                vcard = strip_telephone_number(vcard)

                self._enter(ExportState.WRITING)
                if not sink.on_entry_created(vcard):
                    return self._finish(Outcome.INTERNAL_ERROR, "write to output stream failed")
                self._written += 1
                self._enter(ExportState.COMPOSING)
        finally:
            composer.terminate()
            sink.on_terminate()

        logger.info(
            "Composed and sent %d %s vCard(s) in %.0f ms",
            self._written, request.category.name, (time.monotonic() - started) * 1000,
        )
        return self._finish(Outcome.SUCCESS)
