from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


DEFAULT_CHANNEL = "stable"
DEFAULT_VERSION = "current"
BOARD = "amd64-usr"

SIGNATURE_SUFFIXES = {
    "gpg": ".sig",
    "digest": ".DIGESTS",
}


@dataclass(frozen=True)
class ImageLocation:
    image_name: str
    image_url: str
    signature_url: str


def image_name(oem: Optional[str] = None) -> str:
    if oem:
        return f"coreos_production_{oem}_image.bin.bz2"
    return "coreos_production_image.bin.bz2"


def default_base_url(channel: str) -> str:
    return f"http://{channel}.release.core-os.net/{BOARD}"


def resolve_image(
    *,
    channel: str = DEFAULT_CHANNEL,
    version: str = DEFAULT_VERSION,
    oem: Optional[str] = None,
    base_url: Optional[str] = None,
    verify: str = "gpg",
) -> ImageLocation:
    """Build the image and signature URLs for a release."""

    if verify not in SIGNATURE_SUFFIXES:
        raise ValueError(f"Unknown verification method: {verify!r}")

    base = (base_url or default_base_url(channel)).rstrip("/")
    name = image_name(oem)
    image_url = f"{base}/{version}/{name}"
    signature_url = image_url + SIGNATURE_SUFFIXES[verify]

    logger.debug("Resolved image %s (signature %s)", image_url, signature_url)
    return ImageLocation(image_name=name, image_url=image_url, signature_url=signature_url)
