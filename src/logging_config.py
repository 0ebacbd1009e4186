"""Logging setup for the assessment core.

Library modules only create ``logging.getLogger(__name__)`` loggers; entry
points call ``configure_logging()`` once. Calling it again is a no-op while the
root logger has handlers, so tests and embedding applications keep their own.
"""

import logging
import os
from typing import Optional, Union


LOG_DIR = "logs"
LOG_FILE = "assessment.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(level: Union[int, str, None]) -> int:
    """Accept a logging level number or name ("debug", "INFO", ...)."""
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def configure_logging(level: Union[int, str, None] = None, log_dir: Optional[str] = LOG_DIR) -> None:
    """Attach a console handler and, when ``log_dir`` is writable, a file handler.

    Args:
        level: Root level; defaults to INFO
        log_dir: Directory for assessment.log, or None for console only
    """
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    root.setLevel(resolve_level(level))

    if log_dir is None:
        return
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(os.path.join(log_dir, LOG_FILE), mode="a")
    except OSError as e:
        root.warning(f"File logging disabled: {e}")
        return
    handler.setFormatter(formatter)
    root.addHandler(handler)
