from __future__ import annotations

import bz2
import logging
from typing import Iterable, Iterator

from .errors import DecodeError

logger = logging.getLogger(__name__)


DEFAULT_MAX_OUTPUT = 1024 * 1024


def decompress(chunks: Iterable[bytes], *, max_output: int = DEFAULT_MAX_OUTPUT) -> Iterator[bytes]:
    """Lazily bunzip2 a chunk stream.

    Output pieces are at most ``max_output`` bytes. Concatenated bzip2 streams
    are decoded one after another. The input must end exactly at the end of a
    stream, otherwise the image is reported as truncated.
    """

    decomp = bz2.BZ2Decompressor()
    total_in = 0
    total_out = 0

    for chunk in chunks:
        total_in += len(chunk)
        data = chunk
        while data or not decomp.needs_input:
            if decomp.eof:
                data = decomp.unused_data + data
                if not data:
                    break
                decomp = bz2.BZ2Decompressor()
            try:
                out = decomp.decompress(data, max_output)
            except (OSError, EOFError, ValueError) as e:
                raise DecodeError(
                    f"corrupt bzip2 data after {total_in} compressed bytes: {e}"
                ) from e
            data = b""
            if out:
                total_out += len(out)
                yield out

    if total_in == 0:
        raise DecodeError("compressed image is empty")
    if not decomp.eof:
        raise DecodeError(
            f"compressed image is truncated ({total_in} bytes read, stream not finished)"
        )
    logger.debug("Decompressed %d bytes into %d bytes", total_in, total_out)
