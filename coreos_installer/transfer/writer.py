from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Protocol

from .errors import WriteError

logger = logging.getLogger(__name__)


DEFAULT_PROGRESS_INTERVAL = 64 * 1024 * 1024


class Destination(Protocol):
    def write(self, data: Any) -> Optional[int]:
        ...


class ProgressReporter:
    def __init__(self, label: str, interval: int = DEFAULT_PROGRESS_INTERVAL) -> None:
        self.label = label
        self.interval = interval
        self.total = 0
        self._next = interval

    def update(self, n: int) -> None:
        self.total += n
        if self.interval > 0 and self.total >= self._next:
            logger.info("%s: %d MiB", self.label, self.total // (1024 * 1024))
            while self._next <= self.total:
                self._next += self.interval


class SequentialWriter:
    """Write chunks to a destination strictly in order, with no seeking.

    Short writes are continued until the chunk is fully written. A write that
    makes no progress, or raises anything at all, fails with ``WriteError``.
    ``bytes_written`` is kept current so a caller can report it after a failure.
    """

    def __init__(self, destination: Destination, *, progress: Optional[ProgressReporter] = None) -> None:
        self._dest = destination
        self._progress = progress
        self.bytes_written = 0

    def write(self, chunk: bytes) -> None:
        view = memoryview(chunk)
        while view:
            try:
                n = self._dest.write(view)
            except Exception as e:
                raise WriteError(
                    f"write failed after {self.bytes_written} bytes: {e}",
                    bytes_written=self.bytes_written,
                ) from e
            if n is None:
                n = len(view)
            if n <= 0:
                raise WriteError(
                    f"short write after {self.bytes_written} bytes",
                    bytes_written=self.bytes_written,
                )
            self.bytes_written += n
            if self._progress is not None:
                self._progress.update(n)
            view = view[n:]

    def write_all(self, chunks: Iterable[bytes]) -> int:
        for chunk in chunks:
            self.write(chunk)
        return self.bytes_written


def write(decoded: Iterable[bytes], destination: Destination) -> int:
    """Write every chunk of ``decoded`` to ``destination``; return the byte count."""

    return SequentialWriter(destination).write_all(decoded)
