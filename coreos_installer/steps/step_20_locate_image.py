from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.fetch import FetchError
from ..lib.images import resolve_image
from ..stages import InstallCtx, InstallError

logger = logging.getLogger(__name__)


class LocateImageStep:
    step_id = "20_locate_image"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        image = resolve_image(
            channel=cfg.channel,
            version=cfg.version,
            oem=cfg.oem,
            base_url=cfg.base_url,
            verify=cfg.verify,
        )

        if cfg.dry_run:
            logger.info("Would check %s", image.image_url)
        else:
            try:
                ctx.fetcher.check(image.image_url)
            except FetchError as e:
                raise InstallError(f"Image URL unavailable: {e}") from e

        ctx.image = image
        state["image"] = {
            "name": image.image_name,
            "url": image.image_url,
            "signature_url": image.signature_url,
        }
        return state
