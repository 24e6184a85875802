"""Work out which gpsstats release is running."""
from __future__ import annotations

from importlib import metadata
from pathlib import Path

from .paths import VERSION_FILE

DEFAULT_VERSION = "0.6.0-dev"
DISTRIBUTION = "gpsstats"


def read_version(version_file: Path | None = None) -> str:
    """Prefer the packaged ``VERSION.txt``, then the installed distribution."""

    path = version_file or VERSION_FILE
    if path.is_file():
        text = path.read_text(encoding="utf-8").strip()
        if text:
            return text
    if version_file is not None:
        return DEFAULT_VERSION
    try:
        return metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return DEFAULT_VERSION


__all__ = ["DEFAULT_VERSION", "read_version"]
