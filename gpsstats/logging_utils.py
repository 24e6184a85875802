"""Logging helpers for the gpsstats bridge."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

DEFAULT_LOG_LEVEL = logging.INFO

_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(
    *,
    debug: bool = False,
    log_file: Path | None = None,
    extra_handlers: Iterable[logging.Handler] | None = None,
) -> None:
    """Configure the root logger used by the bridge.

    Human-readable lines always go to the console.  When ``log_file`` is
    given the same lines are also written to a rotating file next to it.
    Consumers can supply additional handlers when embedding the bridge in a
    different runtime.
    """

    root = logging.getLogger()
    if root.handlers:
        # Assume logging is already configured.
        return

    level = logging.DEBUG if debug else DEFAULT_LOG_LEVEL
    root.setLevel(level)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=2 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if extra_handlers:
        for handler in extra_handlers:
            root.addHandler(handler)


__all__ = ["setup_logging", "DEFAULT_LOG_LEVEL"]
