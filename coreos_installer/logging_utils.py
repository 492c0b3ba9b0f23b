from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "/var/log/coreos-install.log"
FALLBACK_LOG_NAME = "coreos-install.log"


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure the root logger once for the whole installer.

    The log normally lives in /var/log. Live and rescue environments do not
    always allow that, so an unwritable location falls back to
    ./coreos-install.log and the path actually used is returned.

    Calling this again only adjusts the level.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_coreos_install_configured", False):
        return getattr(root, "_coreos_install_log_path", log_path)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler: Optional[logging.Handler] = None
    chosen_path = log_path
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
    except OSError:
        chosen_path = str(Path.cwd() / FALLBACK_LOG_NAME)
        file_handler = logging.FileHandler(chosen_path)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        root.addHandler(console)

    setattr(root, "_coreos_install_configured", True)
    setattr(root, "_coreos_install_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path
    )
    return chosen_path
