import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOG_LEVEL_ENV = "SAVEVAULT_LOG_LEVEL"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def level_from_env(default_level: int = logging.INFO) -> int:
    """Level named by SAVEVAULT_LOG_LEVEL, or ``default_level`` when unset or unknown."""
    level_name = os.getenv(LOG_LEVEL_ENV)
    if not level_name:
        return default_level
    level = logging.getLevelName(level_name.strip().upper())
    return level if isinstance(level, int) else default_level


def configure_logging(default_level: int = logging.INFO, log_file: Optional[Path] = None) -> int:
    """Configure the root logger and return the level in effect.

    Records go to stderr so command output on stdout stays machine readable.
    ``log_file`` adds a second handler with the same format.
    """
    level = level_from_env(default_level)
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)
    return level
