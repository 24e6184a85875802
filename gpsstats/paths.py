"""Filesystem locations used by the gpsstats bridge.

Every path that depends on the deployment lives here.  The defaults match
a packaged install on a Linux host, but each one can be overridden with a
``GPSSTATS_*`` environment variable, which is handy while running the
bridge from a checkout or inside the test-suite.
"""
from __future__ import annotations

import os
from pathlib import Path

__all__ = [
    "CONFIG_FILE",
    "LOG_DIR",
    "LOG_FILE",
    "VERSION_FILE",
]

ENV_PREFIX = "GPSSTATS"


def _env_path(name: str, default: str) -> Path:
    value = os.environ.get(f"{ENV_PREFIX}_{name}")
    return Path(value) if value else Path(default)


CONFIG_FILE: Path = _env_path("CONFIG", "/etc/gpsstats.cfg")
LOG_DIR: Path = _env_path("LOG_DIR", "/var/log/gpsstats")
LOG_FILE: Path = _env_path("LOG_FILE", str(LOG_DIR / "gpsstats.log"))
VERSION_FILE: Path = _env_path("VERSION_FILE", "/usr/share/gpsstats/VERSION.txt")
