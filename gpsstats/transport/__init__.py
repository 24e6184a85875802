"""Links to the external services supervised by the bridge."""
from .base import Link

__all__ = ["Link"]
