from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import BinaryIO, Protocol

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def open_output(self) -> BinaryIO: ...
    def close(self) -> None: ...


class FileTransport:
    """Write the exported stream to a file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fh: BinaryIO | None = None

    def open_output(self) -> BinaryIO:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("wb")
        return self._fh

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


class BufferTransport:
    """Keep the exported stream in memory; `data` survives `close()`."""

    def __init__(self) -> None:
        self._buf: io.BytesIO | None = None
        self.data = b""
        self.closed = False

    def open_output(self) -> BinaryIO:
        self._buf = io.BytesIO()
        return self._buf

    def close(self) -> None:
        if self._buf is not None:
            self.data = self._buf.getvalue()
            self._buf.close()
            self._buf = None
        self.closed = True

    @property
    def text(self) -> str:
        return self.data.decode("utf-8")


class StreamSink:
    """Emit vCards to a transport, the owner card first when there is one."""

    def __init__(self, transport: Transport, owner_vcard: str | None = None):
        self.transport = transport
        self.owner_vcard = owner_vcard
        self._out: BinaryIO | None = None
        self.entries_written = 0

    def _write(self, vcard: str | None) -> bool:
        if vcard is None or self._out is None:
            return False
        try:
            self._out.write(vcard.encode("utf-8"))
        except OSError as exc:
            logger.error("Write to output stream failed: %s", exc)
            return False
        return True

    def on_init(self) -> bool:
        try:
            self._out = self.transport.open_output()
        except OSError as exc:
            logger.error("Open output stream failed: %s", exc)
            return False
        if self.owner_vcard is not None:
            logger.debug("Owner vCard: %r", self.owner_vcard)
            return self._write(self.owner_vcard)
        return True

    def on_entry_created(self, vcard: str) -> bool:
        if not self._write(vcard):
            return False
        self.entries_written += 1
        return True

    def on_terminate(self) -> None:
        try:
            self.transport.close()
        except OSError as exc:
            logger.warning("Close output stream failed: %s", exc)
        else:
            logger.debug("Output stream closed")
        self._out = None
