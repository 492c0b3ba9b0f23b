from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)


DEFAULT_STATE_PATH = "/var/lib/coreos-install/state.json"


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in {".yaml", ".yml"}


def load_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    text = p.read_text(encoding="utf-8")
    data = (yaml.safe_load(text) or {}) if _is_yaml(p) else json.loads(text)

    if not isinstance(data, dict):
        raise ValueError(f"State file must be an object/dict, got {type(data)}")
    return data


def save_state(path: str, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    if _is_yaml(p):
        p.write_text(yaml.safe_dump(state, sort_keys=False) + "\n", encoding="utf-8")
    else:
        p.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.debug("State saved to %s", p)


def ensure_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    """Fill required keys and reset the per-run execution record.

    Installs are single-shot: a new run starts with an empty list of completed
    steps, while the outcome of the previous run is kept under
    ``execution.previous``.
    """

    state.setdefault("version", 1)
    state.setdefault("config", {})
    exe = state.setdefault("execution", {})

    previous = {k: exe[k] for k in ("completed_steps", "errors", "transfer") if k in exe}
    if previous:
        exe["previous"] = previous

    exe["current_step"] = None
    exe["completed_steps"] = []
    exe["errors"] = []
    exe.pop("transfer", None)
    return state


def mark_step_completed(state: Dict[str, Any], step_id: str) -> None:
    exe = state.setdefault("execution", {})
    completed = exe.setdefault("completed_steps", [])
    if step_id not in completed:
        completed.append(step_id)
