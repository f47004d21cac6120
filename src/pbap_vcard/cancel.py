from __future__ import annotations

import threading


class CancellationToken:
    """Abort signal shared between a control path and one running export.

    The control path calls `set()`. The exporter calls `consume()` once per
    record; a set token is cleared by the read that observes it, so a stale
    abort never leaks into the next export.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._set = False

    def set(self) -> None:
        with self._lock:
            self._set = True

    def clear(self) -> None:
        with self._lock:
            self._set = False

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._set

    def consume(self) -> bool:
        """Return True and clear the token if it was set."""
        with self._lock:
            was_set = self._set
            self._set = False
            return was_set
