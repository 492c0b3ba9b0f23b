from __future__ import annotations

import bz2
import hashlib
import io
import random
import threading
from typing import Callable, Iterator, List, Optional

IMAGE_NAME = "coreos_production_image.bin.bz2"


def chunked(data: bytes, size: int = 64 * 1024) -> Iterator[bytes]:
    for i in range(0, len(data), size):
        yield data[i : i + size]


def make_image(size: int, seed: int = 7) -> tuple[bytes, bytes]:
    """Return (raw, bz2-compressed) test image data that does not compress away."""

    rng = random.Random(seed)
    raw = rng.randbytes(size)
    return raw, bz2.compress(raw, 9)


def digests_file(data: bytes, name: str = IMAGE_NAME) -> bytes:
    """A release-style DIGESTS file covering ``data``."""

    return (
        "# MD5 HASH\n"
        f"{hashlib.md5(data).hexdigest()}  {name}\n"
        "# SHA1 HASH\n"
        f"{hashlib.sha1(data).hexdigest()}  {name}\n"
        "# SHA512 HASH\n"
        f"{hashlib.sha512(data).hexdigest()}  {name}\n"
    ).encode("ascii")


def flip_hex_digit(signature: bytes, algorithm: str = "sha512") -> bytes:
    """Change one hex digit of the ``algorithm`` digest in a DIGESTS file."""

    lines = signature.decode("ascii").splitlines(keepends=True)
    section = None
    for i, line in enumerate(lines):
        if line.startswith("#"):
            section = line.lstrip("#").split()[0].lower()
            continue
        if section == algorithm:
            first = line[0]
            lines[i] = ("0" if first != "0" else "1") + line[1:]
            return "".join(lines).encode("ascii")
    raise AssertionError(f"no {algorithm} section")


def failing_source(data: bytes, fail_after: int, size: int = 64 * 1024) -> Iterator[bytes]:
    sent = 0
    for chunk in chunked(data, size):
        if sent >= fail_after:
            raise ConnectionResetError("connection reset by peer")
        sent += len(chunk)
        yield chunk


class FailingDestination(io.BytesIO):
    def __init__(self, fail_after: int) -> None:
        super().__init__()
        self.fail_after = fail_after

    def write(self, data) -> int:
        if self.tell() + len(data) > self.fail_after:
            raise OSError(28, "No space left on device")
        return super().write(data)


class RecordingChecker:
    """Checker that keeps every chunk it sees and accepts any signature."""

    name = "recording"

    def __init__(self, result: bool = True, fail_on_update: Optional[BaseException] = None) -> None:
        self.result = result
        self.fail_on_update = fail_on_update
        self.chunks: List[bytes] = []
        self.closed = False

    def begin(self, signature: bytes) -> None:
        self.signature = signature

    def update(self, chunk: bytes) -> None:
        if self.fail_on_update is not None:
            raise self.fail_on_update
        self.chunks.append(chunk)

    def finish(self) -> bool:
        return self.result

    def close(self) -> None:
        self.closed = True


def run_bounded(fn: Callable[[], object], timeout: float = 60.0) -> object:
    """Run ``fn`` on a helper thread and fail if it does not return in time."""

    box: dict = {}

    def target() -> None:
        try:
            box["value"] = fn()
        except BaseException as e:  # re-raised in the test thread
            box["error"] = e

    t = threading.Thread(target=target, daemon=True)
    t.start()
    t.join(timeout)
    assert not t.is_alive(), f"did not finish within {timeout}s (deadlock?)"
    if "error" in box:
        raise box["error"]
    return box["value"]
