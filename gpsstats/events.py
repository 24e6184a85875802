"""Typed events delivered by the host loop to the bridge."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class SignalKind(str, Enum):
    RELOAD = "reload"
    DUMP_STATS = "dump_stats"
    QUIT = "quit"


class TimerTask(str, Enum):
    HOUSEKEEPING = "housekeeping"
    RECONNECT = "reconnect"


@dataclass(frozen=True, slots=True)
class Readable:
    conn_id: str


@dataclass(frozen=True, slots=True)
class Writable:
    conn_id: str


@dataclass(frozen=True, slots=True)
class Timer:
    """A scheduled task coming due.

    ``generation`` lets the owner of a reconnect task recognise timers that
    were superseded after they were scheduled.
    """

    task: TimerTask
    conn_id: Optional[str] = None
    generation: int = 0


@dataclass(frozen=True, slots=True)
class Signal:
    kind: SignalKind


Event = Union[Readable, Writable, Timer, Signal]

__all__ = [
    "Event",
    "Readable",
    "Signal",
    "SignalKind",
    "Timer",
    "TimerTask",
    "Writable",
]
