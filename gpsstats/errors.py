"""Exception hierarchy shared by the links, the supervisors and the bridge."""
from __future__ import annotations


class GpsStatsError(Exception):
    """Base class for every error raised by the bridge."""


class ConnectionFailed(GpsStatsError):
    """Opening a link failed; the supervisor retries with backoff."""


class ConnectionLost(GpsStatsError):
    """A read, write or publish reported that the peer is gone."""


class ProtocolError(GpsStatsError):
    """A single frame or request failed; the connection itself is fine."""


class ResourceExhausted(GpsStatsError):
    """Allocating a protocol handle failed.

    This is not retried: the owning supervisor stays disconnected until the
    configuration is reloaded.
    """


class ConfigError(GpsStatsError):
    """The configuration is invalid and no link may be built from it."""


__all__ = [
    "ConfigError",
    "ConnectionFailed",
    "ConnectionLost",
    "GpsStatsError",
    "ProtocolError",
    "ResourceExhausted",
]
