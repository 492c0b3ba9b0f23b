from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.block import open_device
from ..lib.fetch import FetchError
from ..stages import InstallCtx, InstallError
from ..transfer import FailureReason, TransferResult, make_checker, run_pipeline

logger = logging.getLogger(__name__)


def transfer_record(result: TransferResult) -> Dict[str, Any]:
    return {
        "outcome": result.outcome.value,
        "reason": result.reason.value if result.reason else None,
        "verdict": result.verdict.kind.value if result.verdict else None,
        "bytes_read": result.bytes_read,
        "bytes_written": result.bytes_written,
        "error": str(result.error) if result.error is not None else None,
    }


class WriteImageStep:
    step_id = "40_write_image"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        if ctx.image is None or ctx.signature is None:
            raise InstallError("image or signature missing; run the earlier steps first")

        if cfg.dry_run:
            logger.info(
                "Would stream %s to %s (verify=%s, policy=%s)",
                ctx.image.image_url,
                cfg.device,
                cfg.verify,
                cfg.write_policy,
            )
            return state

        logger.info("Downloading, writing and verifying %s...", ctx.image.image_url)
        checker = make_checker(cfg.verify, keyring=cfg.keyring, filename=ctx.image.image_name)

        try:
            source = ctx.fetcher.open_stream(ctx.image.image_url)
        except FetchError as e:
            raise InstallError(f"Image URL unavailable: {e}") from e

        try:
            with open_device(cfg.device) as dest:
                result = run_pipeline(
                    source,
                    ctx.signature,
                    dest,
                    cfg.handoff_capacity,
                    checker=checker,
                    policy=cfg.policy,
                    staging_dir=cfg.staging_dir,
                )
        except (RuntimeError, OSError) as e:
            # Opening the device or flushing it on close.
            raise InstallError(str(e)) from e
        finally:
            close = getattr(source, "close", None)
            if close is not None:
                close()

        state.setdefault("execution", {})["transfer"] = transfer_record(result)

        if result.reason is FailureReason.VERIFICATION_FAILED:
            raise InstallError(
                f"Signature verification failed for {ctx.image.image_url}; "
                f"{result.bytes_written} bytes on {cfg.device} are NOT trusted. "
                "Download and verify the image again."
            )
        if not result.succeeded:
            raise InstallError(f"Writing disk image failed: {result.describe()}")

        logger.info("Installed %s to %s (%d bytes)", ctx.image.image_name, cfg.device, result.bytes_written)
        return state
