from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    def __init__(self, result: CmdResult) -> None:
        super().__init__(
            f"Command failed ({result.returncode}): {fmt_argv(result.argv)}\n{result.stderr}"
        )
        self.result = result


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    dry_run: bool = False,
) -> CmdResult:
    """Run a short-lived helper tool and capture its output.

    - Always logs the command.
    - dry_run logs but does not execute.
    - A missing binary surfaces as a non-zero result (127) so that callers
      running with check=False can treat it like any other failure.
    - A timeout is reported as 124, the exit status timeout(1) uses.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    try:
        p = subprocess.run(
            argv_list,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(os.environ, **(env or {})),
            timeout=timeout,
        )
    except FileNotFoundError as e:
        result = CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(e))
        if check:
            raise CommandError(result) from e
        return result
    except subprocess.TimeoutExpired as e:
        result = CmdResult(argv=argv_list, returncode=124, stdout="", stderr=f"timed out after {timeout}s")
        if check:
            raise CommandError(result) from e
        return result

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    result = CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
    if check and p.returncode != 0:
        raise CommandError(result)
    return result
