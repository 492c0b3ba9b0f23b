from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict

from ..lib.fetch import FetchError
from ..stages import InstallCtx, InstallError

logger = logging.getLogger(__name__)


class FetchSignatureStep:
    step_id = "30_fetch_signature"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        if ctx.image is None:
            raise InstallError("image location missing; run 20_locate_image first")

        url = ctx.image.signature_url
        if ctx.cfg.dry_run:
            logger.info("Would download signature %s", url)
            ctx.signature = b""
            return state

        logger.info("Downloading the signature for %s...", ctx.image.image_url)
        try:
            ctx.signature = ctx.fetcher.fetch_bytes(url)
        except FetchError as e:
            raise InstallError(f"Signature URL unavailable: {e}") from e

        state.setdefault("image", {})["signature"] = {
            "url": url,
            "bytes": len(ctx.signature),
            "sha256": hashlib.sha256(ctx.signature).hexdigest(),
        }
        return state
