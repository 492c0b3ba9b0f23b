from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .lib.fetch import DEFAULT_CHUNK_SIZE, DEFAULT_TIMEOUT
from .lib.images import DEFAULT_CHANNEL, DEFAULT_VERSION, SIGNATURE_SUFFIXES
from .transfer import DEFAULT_HANDOFF_CAPACITY, WritePolicy


@dataclass(frozen=True)
class InstallConfig:
    device: str = ""
    channel: str = DEFAULT_CHANNEL
    version: str = DEFAULT_VERSION
    oem: Optional[str] = None
    base_url: Optional[str] = None
    verify: str = "gpg"
    keyring: Optional[str] = None
    write_policy: str = WritePolicy.EAGER.value
    handoff_capacity: int = DEFAULT_HANDOFF_CAPACITY
    staging_dir: Optional[str] = None
    http_timeout: float = DEFAULT_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    allow_file: bool = False
    dry_run: bool = False

    @property
    def policy(self) -> WritePolicy:
        return WritePolicy(self.write_policy)

    def validate(self) -> None:
        if not self.device:
            raise ValueError("No target block device provided, -d is required.")
        if self.verify not in SIGNATURE_SUFFIXES:
            raise ValueError(f"verify must be one of {sorted(SIGNATURE_SUFFIXES)}, got {self.verify!r}")
        if self.write_policy not in {p.value for p in WritePolicy}:
            raise ValueError(f"write_policy must be eager|staged, got {self.write_policy!r}")
        if self.handoff_capacity <= 0:
            raise ValueError("handoff_capacity must be > 0")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be > 0")
        if self.staging_dir and not Path(self.staging_dir).is_dir():
            raise ValueError(f"Temporary location {self.staging_dir!r} is not a directory")

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


_FIELDS = {f.name for f in dataclasses.fields(InstallConfig)}


def load_install_config(path: Optional[str]) -> InstallConfig:
    """Read an InstallConfig from a YAML mapping; no path means all defaults."""

    if not path:
        return InstallConfig()

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("install config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping/object")

    unknown = sorted(set(raw) - _FIELDS)
    if unknown:
        raise ValueError(f"Unknown install config keys: {', '.join(unknown)}")
    return InstallConfig(**raw)


def apply_overrides(cfg: InstallConfig, **overrides: Any) -> InstallConfig:
    """Replace fields with every override that is not None."""

    changes = {k: v for k, v in overrides.items() if v is not None}
    unknown = sorted(set(changes) - _FIELDS)
    if unknown:
        raise ValueError(f"Unknown install config keys: {', '.join(unknown)}")
    return dataclasses.replace(cfg, **changes)
