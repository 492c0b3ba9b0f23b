from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.block import check_target
from ..stages import InstallCtx, InstallError

logger = logging.getLogger(__name__)


class CheckTargetStep:
    step_id = "10_check_target"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        try:
            info = check_target(cfg.device, allow_file=cfg.allow_file, dry_run=cfg.dry_run)
        except RuntimeError as e:
            raise InstallError(str(e)) from e

        state["target"] = {
            "device": info.path,
            "is_block": info.is_block,
            "size_bytes": info.size_bytes,
        }
        return state
