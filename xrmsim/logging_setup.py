# xrmsim/logging_setup.py
from __future__ import annotations

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
PACKAGE_LOGGER = "xrmsim"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(process)d] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class RunFileHandler(RotatingFileHandler):
    """One log file per run, named ``<prefix>-<timestamp>.log``.

    Past ``max_bytes`` the handler moves on to a fresh timestamped file
    rather than renaming the old one to ``.1``.
    """

    def __init__(self, directory: Path, prefix: str, max_bytes: int = 1_000_000):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        super().__init__(self._next_path(), maxBytes=max_bytes, backupCount=0, encoding="utf-8", errors="replace")

    def _next_path(self) -> str:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")[:-3]
        return os.fspath(self.directory / f"{self.prefix}-{stamp}.log")

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None
        self.baseFilename = self._next_path()
        self.stream = self._open()


def resolve_level(level: Optional[str | int] = None) -> int:
    """Level from the argument, else ``LOG_LEVEL``, else INFO. Unknown names mean INFO."""
    if isinstance(level, int):
        return level
    name = level if level else os.getenv("LOG_LEVEL", "INFO")
    found = logging.getLevelName(str(name).upper())
    return found if isinstance(found, int) else logging.INFO


def start_log(
    *,
    app_name: str = "xrmsim",
    log_dir: Optional[str | Path] = None,
    level: Optional[str | int] = None,
    to_console: bool = True,
    to_file: bool = True,
    max_bytes: int = 1_000_000,
) -> logging.Logger:
    """
    Send the engine's log records somewhere for a command line run.

    Only the ``xrmsim`` logger is configured, so an application that embeds the
    engine keeps its own root handlers. Files go to ``log_dir``, else
    ``LOG_DIR``, else ``<repo>/var/logs``. Calling it again replaces the
    handlers installed by the previous call.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(resolve_level(level))
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    target = None
    if to_file:
        target = Path(log_dir or os.getenv("LOG_DIR") or REPO_ROOT / "var" / "logs")
        file_handler = RunFileHandler(target, prefix=app_name, max_bytes=max_bytes)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    if to_console or not to_file:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    logger.debug("Logging for %s at %s, files in %s", app_name, logging.getLevelName(logger.level), target)
    return logger
