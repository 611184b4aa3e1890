"""Timer-coalesced writes for the access log stream."""

from __future__ import annotations

import io
import threading
from typing import IO

from typing_extensions import override

from logline.config import DEFAULT_BUFFER_DURATION
from logline.logging_config import get_logger


class BufferedStream(io.TextIOBase):
    """
    Collect lines and write them to ``stream`` in one call per interval.

    The first write after a flush arms a timer; when it fires everything
    collected so far is joined and written, and the next write re-arms it.
    """

    def __init__(self, stream: IO[str], interval_ms: int = DEFAULT_BUFFER_DURATION) -> None:
        super().__init__()
        self._stream = stream
        self._interval = interval_ms / 1000
        self._chunks: list[str] = []
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @override
    def writable(self) -> bool:
        return True

    @override
    def write(self, s: str) -> int:
        with self._lock:
            self._chunks.append(s)
            if self._timer is None:
                self._timer = threading.Timer(self._interval, self.flush)
                self._timer.daemon = True
                self._timer.start()
        return len(s)

    @override
    def flush(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            data = "".join(self._chunks)
            self._chunks.clear()

        if not data:
            return
        try:
            self._stream.write(data)
        except (OSError, ValueError):
            get_logger(__name__).exception("Buffered access log flush failed", size=len(data))
            raise

    @override
    def close(self) -> None:
        if not self.closed:
            self.flush()
        super().close()

    @property
    def pending(self) -> int:
        """Number of writes waiting for the next flush."""
        with self._lock:
            return len(self._chunks)
