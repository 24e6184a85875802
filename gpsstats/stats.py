"""Lifetime counters for the supervised connections."""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional


class StatEvent(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    RECEIVE = "receive"
    SEND = "send"


@dataclass
class ConnectionStats:
    connects: int = 0
    disconnects: int = 0
    events_in: int = 0
    events_out: int = 0
    last_event_time: Optional[float] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "connects": self.connects,
            "disconnects": self.disconnects,
            "events_in": self.events_in,
            "events_out": self.events_out,
            "last_event_time": self.last_event_time,
        }


class StatsRegistry:
    """Counters per connection id, kept for the whole life of the process.

    Reconnects and configuration reloads never reset them.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock: Callable[[], float] = clock or time.time
        self._stats: Dict[str, ConnectionStats] = {}

    def record(self, conn_id: str, event: StatEvent) -> None:
        stats = self._stats.setdefault(conn_id, ConnectionStats())
        if event is StatEvent.CONNECT:
            stats.connects += 1
        elif event is StatEvent.DISCONNECT:
            stats.disconnects += 1
        elif event is StatEvent.RECEIVE:
            stats.events_in += 1
            stats.last_event_time = self._clock()
        elif event is StatEvent.SEND:
            stats.events_out += 1
            stats.last_event_time = self._clock()

    def snapshot(self, conn_id: str) -> Dict[str, Any]:
        stats = self._stats.get(conn_id)
        return (stats or ConnectionStats()).snapshot()

    def connections(self) -> list[str]:
        return sorted(self._stats)


__all__ = ["ConnectionStats", "StatEvent", "StatsRegistry"]
