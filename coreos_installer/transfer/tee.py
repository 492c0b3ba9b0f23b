from __future__ import annotations

import logging
from typing import Iterable, Iterator, Tuple

from .errors import SourceError
from .handoff import DEFAULT_HANDOFF_CAPACITY, HandoffBuffer

logger = logging.getLogger(__name__)


class Tee:
    """Duplicate a chunk source into a handoff buffer and this iterator.

    Every chunk is put into the handoff first and only then yielded, so the
    source is never read further ahead than the handoff capacity allows. A
    failing source aborts the handoff with the same ``SourceError`` that is
    raised to the iterating side.
    """

    def __init__(self, source: Iterable[bytes], handoff: HandoffBuffer) -> None:
        self._source = source
        self._handoff = handoff
        self.bytes_read = 0

    def __iter__(self) -> Iterator[bytes]:
        it = iter(self._source)
        while True:
            try:
                chunk = next(it)
            except StopIteration:
                logger.debug("Image source exhausted after %d bytes", self.bytes_read)
                return
            except SourceError as e:
                self._handoff.abort(e)
                raise
            except Exception as e:
                err = SourceError(f"reading the image source failed: {e}")
                self._handoff.abort(err)
                raise err from e

            if not chunk:
                continue
            self.bytes_read += len(chunk)
            self._handoff.put(chunk)
            yield chunk


def tee(
    source: Iterable[bytes],
    capacity: int = DEFAULT_HANDOFF_CAPACITY,
) -> Tuple[Tee, HandoffBuffer]:
    """Return the two copies of ``source``: the direct one and the buffered one."""

    handoff = HandoffBuffer(capacity)
    return Tee(source, handoff), handoff
