"""Bridge GNSS receiver statistics from gpsd to an MQTT topic.

The bridge can be embedded instead of started through ``gpsstats``::

    from gpsstats import BridgeService, load_config

    service = BridgeService(load_config("/etc/gpsstats.cfg"))
    service.start()
    service.loop.run_forever()
"""
from __future__ import annotations

from .bridge import BridgeService
from .config import BridgeConfig, load_config
from .errors import ConfigError, GpsStatsError

__all__ = [
    "BridgeConfig",
    "BridgeService",
    "ConfigError",
    "GpsStatsError",
    "load_config",
]
