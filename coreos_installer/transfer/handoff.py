from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Iterator, Optional

from .errors import HandoffAborted

logger = logging.getLogger(__name__)


DEFAULT_HANDOFF_CAPACITY = 256 * 1024


class HandoffBuffer:
    """Bounded single-producer/single-consumer chunk queue.

    Capacity is measured in bytes. ``put`` blocks while the buffer is full and
    ``get`` blocks while it is empty. Two terminal signals exist:

    - ``close()``: end of data; ``get`` returns ``None`` once buffered chunks drain.
    - ``abort(reason)``: buffered data is discarded and every waiter (and every
      later call) raises ``HandoffAborted``.

    A chunk bigger than the capacity is accepted as soon as the buffer is empty.
    """

    def __init__(self, capacity: int = DEFAULT_HANDOFF_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"handoff capacity must be > 0, got {capacity}")
        self.capacity = capacity
        self._chunks: Deque[bytes] = deque()
        self._size = 0
        self._cond = threading.Condition()
        self._closed = False
        self._aborted = False
        self._abort_reason: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def abort_reason(self) -> Optional[BaseException]:
        return self._abort_reason

    def put(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._cond:
            while True:
                if self._aborted:
                    raise HandoffAborted(self._abort_reason)
                if self._closed:
                    raise ValueError("put() on a closed handoff buffer")
                if self._size == 0 or self._size + len(chunk) <= self.capacity:
                    break
                self._cond.wait()
            self._chunks.append(bytes(chunk))
            self._size += len(chunk)
            self._cond.notify_all()

    def get(self) -> Optional[bytes]:
        """Return the next chunk, or ``None`` at end of data."""

        with self._cond:
            while True:
                if self._aborted:
                    raise HandoffAborted(self._abort_reason)
                if self._chunks:
                    chunk = self._chunks.popleft()
                    self._size -= len(chunk)
                    self._cond.notify_all()
                    return chunk
                if self._closed:
                    return None
                self._cond.wait()

    def close(self) -> None:
        with self._cond:
            if self._aborted or self._closed:
                return
            self._closed = True
            self._cond.notify_all()

    def abort(self, reason: Optional[BaseException] = None) -> None:
        with self._cond:
            if self._aborted:
                return
            logger.debug("Handoff aborted (reason=%s, discarded=%d bytes)", reason, self._size)
            self._aborted = True
            self._abort_reason = reason
            self._chunks.clear()
            self._size = 0
            self._cond.notify_all()

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.get()
            if chunk is None:
                return
            yield chunk
