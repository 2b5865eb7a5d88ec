from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default
FALLBACK_LOG_NAME = "integration-wizard.log"

_CONFIGURED_ATTR = "_integration_wizard_configured"
_LOG_PATH_ATTR = "_integration_wizard_log_path"


def _open_log(log_path: str) -> tuple[logging.Handler, str]:
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path, encoding="utf-8"), log_path
    except OSError as e:
        # read-only checkout or a Logs/ path that is a file
        fallback = str(Path.cwd() / FALLBACK_LOG_NAME)
        logging.getLogger(__name__).debug("Cannot open %s (%s), using %s", log_path, e, fallback)
        return logging.FileHandler(fallback, encoding="utf-8"), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Send every install decision to the project's wizard log.

    The CLI passes ``<project>/Logs/integration-wizard.log`` (or ``--log``).
    Registry edits, downloads and each installer outcome land there next to
    the JSON report, so a failed batch can be diagnosed after the fact. If
    the project directory is not writable the log goes to
    ``integration-wizard.log`` in the working directory instead.

    Only the first call installs handlers; later calls return the file chosen
    then. Returns the log file actually in use.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, _CONFIGURED_ATTR, False):
        return getattr(root, _LOG_PATH_ATTR, log_path)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler, chosen_path = _open_log(log_path)
    handlers: list[logging.Handler] = [file_handler]
    console: Optional[logging.Handler] = logging.StreamHandler() if also_console else None
    if console is not None:
        handlers.append(console)

    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)

    setattr(root, _CONFIGURED_ATTR, True)
    setattr(root, _LOG_PATH_ATTR, chosen_path)

    logging.getLogger(__name__).info(
        "Integration wizard log: %s (requested %s)", chosen_path, log_path
    )
    return chosen_path
