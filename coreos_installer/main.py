from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, Optional

from .install_config import InstallConfig, apply_overrides, load_install_config
from .lib.fetch import HttpFetcher
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .stages import InstallCtx, InstallError, run_stages
from .state_store import DEFAULT_STATE_PATH, ensure_defaults, load_state, save_state
from .steps import CheckTargetStep, FetchSignatureStep, LocateImageStep, WriteImageStep
from .transfer import WritePolicy

logger = logging.getLogger(__name__)


def build_steps():
    return [
        CheckTargetStep(),
        LocateImageStep(),
        FetchSignatureStep(),
        WriteImageStep(),
    ]


def run(
    cfg: InstallConfig,
    *,
    state_path: str = DEFAULT_STATE_PATH,
    log_path: str = DEFAULT_LOG_PATH,
    stop_after: Optional[str] = None,
    verbose: bool = False,
    fetcher: Optional[HttpFetcher] = None,
) -> Dict[str, Any]:
    """Install one image, recording the run in the state file."""

    actual_log_path = configure_logging(
        log_path=log_path, level=logging.DEBUG if verbose else logging.INFO
    )

    state = ensure_defaults(load_state(state_path))
    state["config"] = cfg.as_dict()
    paths = state.setdefault("execution", {}).setdefault("paths", {})
    paths["log_path_requested"] = log_path
    paths["log_path_actual"] = actual_log_path

    try:
        cfg.validate()
        ctx = InstallCtx(
            cfg=cfg,
            fetcher=fetcher
            if fetcher is not None
            else HttpFetcher(timeout=cfg.http_timeout, chunk_size=cfg.chunk_size),
        )
        result = run_stages(ctx=ctx, state=state, steps=build_steps(), stop_after=stop_after)
        state = result.state
        state.setdefault("execution", {}).setdefault("summary", {})["ran_steps"] = result.ran_steps
        return state
    except Exception as e:
        logger.exception("Installer failed")
        state.setdefault("execution", {}).setdefault("errors", []).append(
            {
                "step": (state.get("execution") or {}).get("current_step"),
                "error": str(e),
            }
        )
        raise
    finally:
        save_state(state_path, state)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="coreos-install",
        description="Download, verify and write a CoreOS image to a block device.",
    )
    p.add_argument("-d", dest="device", required=True, help="Install CoreOS to the given device.")
    p.add_argument("-V", dest="version", default=None, help="Version to install (e.g. current)")
    p.add_argument("-C", dest="channel", default=None, help="Release channel to use (e.g. beta)")
    p.add_argument("-o", dest="oem", default=None, help="OEM type to install (e.g. ami)")
    p.add_argument("-b", dest="base_url", default=None, help="URL to the image mirror")
    p.add_argument(
        "-t",
        dest="staging_dir",
        default=None,
        help="Temporary location with enough space for a staged image (implies --write-policy staged)",
    )
    p.add_argument("-v", dest="verbose", action="store_true", help="Super verbose, for debugging.")
    p.add_argument("--config", default=None, help="YAML install config; flags override it")
    p.add_argument("--state", default=DEFAULT_STATE_PATH, help="Path to run state (json|yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--verify", choices=["gpg", "digest"], default=None, help="Signature method")
    p.add_argument("--keyring", default=None, help="gpg keyring holding the image signing key")
    p.add_argument(
        "--write-policy",
        choices=[wp.value for wp in WritePolicy],
        default=None,
        help="eager writes while verifying; staged writes only after a valid signature",
    )
    p.add_argument("--handoff-capacity", type=int, default=None, help="Bytes buffered between reader and writer")
    p.add_argument("--allow-file", action="store_true", default=None, help="Accept a regular file as target")
    p.add_argument("--dry-run", action="store_true", default=None)
    p.add_argument("--stop-after", default=None, help="Stop after step_id (e.g. 30_fetch_signature)")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    write_policy = args.write_policy
    if args.staging_dir and write_policy is None:
        write_policy = WritePolicy.STAGED.value

    try:
        cfg = apply_overrides(
            load_install_config(args.config),
            device=args.device,
            version=args.version,
            channel=args.channel,
            oem=args.oem,
            base_url=args.base_url,
            staging_dir=args.staging_dir,
            verify=args.verify,
            keyring=args.keyring,
            write_policy=write_policy,
            handoff_capacity=args.handoff_capacity,
            allow_file=args.allow_file,
            dry_run=args.dry_run,
        )
    except (FileNotFoundError, ValueError) as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    try:
        run(
            cfg,
            state_path=args.state,
            log_path=args.log,
            stop_after=args.stop_after,
            verbose=args.verbose,
        )
    except (InstallError, ValueError):
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
