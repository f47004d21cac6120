from __future__ import annotations

import logging

from .errors import InvalidWindow
from .model import Category, OrderKey, RecordHandle, Selection, Window, effective_order
from .store import RecordSource

logger = logging.getLogger(__name__)


class RangeResolver:
    """Turn a 1-based ordinal window into a selection over record identities.

    The mapping reflects the source at the moment of resolution only; the
    store may change between two exports.
    """

    def __init__(self, source: RecordSource):
        self.source = source

    def handles(self, category: Category, window: Window, order: OrderKey = OrderKey.INDEXED) -> list[RecordHandle]:
        """Records at ordinals ``window.start..window.end``, clamped to the collection."""
        if not window.is_valid:
            raise InvalidWindow(window.start, window.end)
        order = effective_order(category, order)
        view = self.source.open_ordered(category, order)
        try:
            first = view.identity_at(window.start)
            if first is None:
                return []
            out = [RecordHandle(first, window.start)]
            if window.end == window.start:
                return out
            for ordinal, (identity, _) in enumerate(view, start=window.start + 1):
                out.append(RecordHandle(identity, ordinal))
                if ordinal == window.end:
                    break
            return out
        finally:
            view.close()

    def resolve(self, category: Category, window: Window, order: OrderKey = OrderKey.INDEXED) -> Selection:
        order = effective_order(category, order)
        handles = self.handles(category, window, order)
        if not handles:
            logger.debug("Window [%d, %d] starts past the end of %s", window.start, window.end, category.name)
            return Selection.empty(category)

        first, last = handles[0].identity, handles[-1].identity
        if len(handles) == 1:
            selection = Selection.only(category, first)
        elif order is OrderKey.NEWEST_FIRST:
            # Newest first: the larger ordinal holds the smaller identity.
            selection = Selection.between(category, last, first)
        elif order is OrderKey.INDEXED:
            selection = Selection.between(category, first, last)
        else:
            selection = Selection.of(category, (h.identity for h in handles))
        logger.debug("Resolved %s window [%d, %d] to %s", category.name, window.start, window.end, selection)
        return selection
