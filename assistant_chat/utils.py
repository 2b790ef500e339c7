"""Logging helpers shared by the chat service and the CLI."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_FILENAME = "assistant_chat.log"


def setup_logging(log_dir: Union[str, Path], level: int = logging.INFO) -> Path:
    """Configure console and file logging and return the log file path.

    The root logger receives a stream handler and a file handler writing to
    ``<log_dir>/assistant_chat.log``.  Calling this twice with the same
    directory does not duplicate handlers.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILENAME

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root.handlers
    )
    if not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    has_file = any(
        isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
        for h in root.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logging.getLogger(__name__).debug("Logging configured at %s", log_file)
    return log_file
