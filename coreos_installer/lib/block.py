from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set

from .command import CommandError, run_cmd

logger = logging.getLogger(__name__)


PROC_MOUNTS = "/proc/mounts"
BLOCKDEV_TIMEOUT = 30


@dataclass(frozen=True)
class TargetInfo:
    path: str
    is_block: bool
    size_bytes: Optional[int]


def _is_partition_of(candidate: str, disk: str) -> bool:
    if not candidate.startswith(disk):
        return False
    rest = candidate[len(disk) :]
    # nvme/mmcblk devices use a p suffix before the partition number
    if disk.endswith(tuple("0123456789")):
        return rest.startswith("p") and rest[1:].isdigit()
    return rest.isdigit()


def mounted_sources(mounts_path: str = PROC_MOUNTS) -> Set[str]:
    p = Path(mounts_path)
    if not p.exists():
        return set()
    sources = set()
    for line in p.read_text(encoding="utf-8").splitlines():
        fields = line.split()
        if fields and fields[0].startswith("/"):
            sources.add(fields[0])
    return sources


def device_size(dev: str, *, dry_run: bool = False) -> Optional[int]:
    """Return the size of a block device in bytes, or None if unknown."""

    try:
        r = run_cmd(["blockdev", "--getsize64", dev], timeout=BLOCKDEV_TIMEOUT, dry_run=dry_run)
    except CommandError as e:
        logger.warning("Unable to determine size of %s: %s", dev, e)
        return None
    out = (r.stdout or "").strip()
    if not out.isdigit():
        logger.warning("Unable to determine size of %s", dev)
        return None
    return int(out)


def check_target(
    path: str,
    *,
    allow_file: bool = False,
    mounts_path: str = PROC_MOUNTS,
    dry_run: bool = False,
) -> TargetInfo:
    """Pre-flight the install target.

    The target must exist and be a block device (or a regular file when
    ``allow_file`` is set), and neither it nor any of its partitions may be
    mounted.
    """

    if not path:
        raise RuntimeError("No target block device provided, -d is required.")

    try:
        st = os.stat(path)
    except OSError as e:
        raise RuntimeError(f"Target {path!r} is inaccessible: {e}") from e

    is_block = stat.S_ISBLK(st.st_mode)
    if not is_block and not (allow_file and stat.S_ISREG(st.st_mode)):
        raise RuntimeError(f"Target {path!r} is not a block device")

    real = os.path.realpath(path)
    for src in mounted_sources(mounts_path):
        if src == real or _is_partition_of(src, real):
            raise RuntimeError(f"Target {path!r} is in use: {src} is mounted")

    size = device_size(path, dry_run=dry_run) if is_block else st.st_size
    logger.info("Target %s ok (block=%s, size=%s)", path, is_block, size)
    return TargetInfo(path=path, is_block=is_block, size_bytes=size)


class DeviceHandle:
    """Write-only, sequential handle on the target device.

    ``write`` is a single ``os.write`` call and may be short; ``close``
    flushes to stable storage before releasing the descriptor.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: Optional[int] = os.open(path, os.O_WRONLY | getattr(os, "O_CLOEXEC", 0))

    def write(self, data) -> int:
        if self._fd is None:
            raise OSError(f"{self.path} is closed")
        return os.write(self._fd, data)

    def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def __enter__(self) -> "DeviceHandle":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_device(path: str) -> DeviceHandle:
    try:
        return DeviceHandle(path)
    except OSError as e:
        raise RuntimeError(f"Failed to open {path!r} for writing: {e}") from e
