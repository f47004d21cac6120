from __future__ import annotations

import logging

from .cancel import CancellationToken
from .composer import compose_contact, compose_owner_number_vcard
from .config import Settings
from .errors import MalformedFilter, StoreUnavailable
from .exporter import ExportOrchestrator, ExportRequest
from .formatters import call_log_display_name, numbers_match, strip_telephone_number
from .model import (
    Category,
    ExportResult,
    OrderKey,
    Outcome,
    ResponseCode,
    Selection,
    VCardVersion,
    Window,
)
from .sink import Transport
from .store import RecordSource
from .vcard_filter import PropertyFilter

logger = logging.getLogger(__name__)


def response_code(result: ExportResult) -> ResponseCode:
    if result.outcome is Outcome.SUCCESS:
        return ResponseCode.OK
    if result.rejected:
        return ResponseCode.BAD_REQUEST
    return ResponseCode.INTERNAL_ERROR


class PhonebookManager:
    """Operations the phonebook access service calls.

    Contact listings carry an implicit owner record in front: the owner is
    handle 0, and the contacts collection is one larger than the store.
    """

    def __init__(self, source: RecordSource, settings: Settings | None = None):
        self.source = source
        self.settings = settings or Settings()
        self.last_result: ExportResult | None = None

    # ── Sizes and listings ─────────────────────────────────────────────────────

    def get_collection_size(self, category: Category) -> int:
        try:
            size = self.source.size(category)
        except StoreUnavailable:
            logger.error("Store unavailable while getting %s size", category.name)
            return 0
        if category is Category.PHONEBOOK:
            size += 1   # owner record
        logger.debug("Collection size for %s is %d", category.name, size)
        return size

    def owner_name(self) -> str:
        if self.settings.use_profile_for_owner:
            profile = self.settings.profile_contact()
            if profile is not None:
                return profile.display_name
        return self.settings.local_phone_name

    def get_ordered_name_list(self, order: OrderKey = OrderKey.INDEXED) -> list[str]:
        names = [self.owner_name()]
        try:
            view = self.source.open_ordered(Category.PHONEBOOK, order)
            try:
                for identity, name in view:
                    names.append(f"{name or self.settings.unknown_name},{identity}")
            finally:
                view.close()
        except StoreUnavailable:
            logger.error("Store unavailable while getting phonebook name list")
        return names

    def find_names_by_number(self, number: str | None) -> list[str]:
        """Contacts owning ``number`` as "name,identity"; "" lists every contact."""
        if number is None:
            return []
        found: list[str] = []
        try:
            if number == "":
                view = self.source.open_ordered(Category.PHONEBOOK, OrderKey.INDEXED)
                try:
                    rows = [(identity, name) for identity, name in view]
                finally:
                    view.close()
            else:
                rows = [
                    (identity, name)
                    for identity, name, candidate in self.source.phone_index()
                    if numbers_match(number, candidate)
                ]
        except StoreUnavailable:
            logger.error("Store unavailable while looking up %r", number)
            return found
        for identity, name in rows:
            entry = f"{name or self.settings.unknown_name},{identity}"
            logger.debug("Got %s by number %r", entry, number)
            if entry not in found:
                found.append(entry)
        return found

    def get_call_history_names(self, category: Category) -> list[str]:
        names: list[str] = []
        try:
            cursor = self.source.query(Selection.all(category), OrderKey.NEWEST_FIRST)
            try:
                for entry in cursor:
                    names.append(call_log_display_name(entry, self.settings.unknown_number))
            finally:
                cursor.close()
        except StoreUnavailable:
            logger.error("Store unavailable while loading %s history", category.name)
        return names

    # ── Owner record ───────────────────────────────────────────────────────────

    def get_owner_vcard(self, version: VCardVersion, mask: bytes | None = None) -> str:
        """The local device's own card, independent of the windowed export.

        Raises MalformedFilter for a mask too short to read.
        """
        if self.settings.use_profile_for_owner:
            profile = self.settings.profile_contact()
            if profile is not None:
                vfilter = PropertyFilter(mask)
                photo = self.settings.include_photos and vfilter.is_photo_included()
                vcard = compose_contact(profile, version, include_photo=photo)
                return strip_telephone_number(vfilter.apply(vcard, version.is_v21))
        return compose_owner_number_vcard(
            self.settings.local_phone_name, self.settings.local_phone_number, version
        )

    # ── Export ─────────────────────────────────────────────────────────────────

    def export_window(
        self,
        transport: Transport,
        category: Category,
        window: Window,
        version: VCardVersion = VCardVersion.V21,
        owner_vcard: str | None = None,
        mask: bytes | None = None,
        ignore_filter: bool = False,
        token: CancellationToken | None = None,
        order: OrderKey = OrderKey.INDEXED,
    ) -> ResponseCode:
        orchestrator = ExportOrchestrator(
            self.source,
            transport,
            token,
            include_photos=self.settings.include_photos,
            unknown_number=self.settings.unknown_number,
        )
        result = orchestrator.run(ExportRequest(
            category=category,
            window=window,
            version=version,
            owner_vcard=owner_vcard,
            mask=mask,
            ignore_filter=ignore_filter,
            order=order,
        ))
        self.last_result = result
        if result.reason:
            logger.info("Export of %s %s ended %s: %s", category.name, window, result.outcome.value, result.reason)
        return response_code(result)

    def export_one(
        self,
        transport: Transport,
        offset: int,
        version: VCardVersion = VCardVersion.V21,
        owner_vcard: str | None = None,
        mask: bytes | None = None,
        ignore_filter: bool = False,
        token: CancellationToken | None = None,
        order: OrderKey = OrderKey.INDEXED,
    ) -> ResponseCode:
        """Export the single contact at 1-based ``offset`` under ``order``."""
        return self.export_window(
            transport, Category.PHONEBOOK, Window(offset, offset), version,
            owner_vcard, mask, ignore_filter, token, order,
        )

    def owner_vcard_or_none(self, version: VCardVersion, mask: bytes | None) -> str | None:
        """Owner card for a listing that starts at handle 0; None on a bad mask."""
        try:
            return self.get_owner_vcard(version, mask)
        except MalformedFilter as exc:
            logger.error("Cannot build owner vCard: %s", exc)
            return None
