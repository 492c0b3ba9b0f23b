from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .install_config import InstallConfig
from .lib.fetch import HttpFetcher
from .lib.images import ImageLocation
from .state_store import mark_step_completed

logger = logging.getLogger(__name__)


class InstallError(RuntimeError):
    """An install stage could not complete."""


@dataclass
class InstallCtx:
    """What the stages hand to each other beyond the persisted state.

    The signature blob stays in memory only; the state file records where it
    came from and how large it was.
    """

    cfg: InstallConfig
    fetcher: HttpFetcher
    image: Optional[ImageLocation] = None
    signature: Optional[bytes] = None


class Step(Protocol):
    step_id: str

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class StagesResult:
    state: Dict[str, Any]
    ran_steps: List[str]


def run_stages(
    *,
    ctx: InstallCtx,
    state: Dict[str, Any],
    steps: Sequence[Step],
    stop_after: Optional[str] = None,
) -> StagesResult:
    """Run install steps in order; ``stop_after`` ends the run early."""

    if stop_after is not None and stop_after not in {s.step_id for s in steps}:
        raise ValueError(f"Unknown step_id for stop_after: {stop_after}")

    ran: List[str] = []
    for step in steps:
        state.setdefault("execution", {})["current_step"] = step.step_id
        logger.info("Running step %s", step.step_id)
        state = step.run(ctx, state)
        mark_step_completed(state, step.step_id)
        ran.append(step.step_id)

        if stop_after is not None and step.step_id == stop_after:
            logger.info("Stopping after %s", stop_after)
            break

    state.setdefault("execution", {})["current_step"] = None
    return StagesResult(state=state, ran_steps=ran)
