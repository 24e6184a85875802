"""Report models decoded from gpsd's JSON protocol.

gpsd streams one JSON object per line, each tagged with a ``class``.  A
single object only ever describes part of the receiver state (``SKY``
carries the satellites, ``TPV`` the fix, ``TOFF``/``PPS`` the clock
offsets), so :class:`ReceiverState` merges them the way libgps fills its
``gps_data_t`` and every decoded line yields a :class:`GpsdReport` with the
merged view.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ProtocolError


class ReportClass(str, Enum):
    VERSION = "VERSION"
    ERROR = "ERROR"
    TPV = "TPV"
    SKY = "SKY"
    TOFF = "TOFF"
    PPS = "PPS"
    DEVICES = "DEVICES"
    WATCH = "WATCH"
    OTHER = "OTHER"


class FixMode(IntEnum):
    NOT_SEEN = 0
    NO_FIX = 1
    FIX_2D = 2
    FIX_3D = 3


@dataclass(frozen=True, slots=True)
class Satellite:
    svid: int
    gnssid: int
    ss: float
    used: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Satellite":
        try:
            svid = int(data.get("svid", data.get("PRN", 0)) or 0)
            gnssid = int(data.get("gnssid", 0) or 0)
            ss = float(data.get("ss", 0.0) or 0.0)
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"invalid satellite entry: {data!r}") from exc
        return cls(svid=svid, gnssid=gnssid, ss=ss, used=bool(data.get("used", False)))


@dataclass(frozen=True, slots=True)
class TimeOffset:
    """A clock sample paired with the reference time it was taken against."""

    real_sec: int
    real_nsec: int
    clock_sec: int
    clock_nsec: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeOffset":
        try:
            return cls(
                real_sec=int(data["real_sec"]),
                real_nsec=int(data["real_nsec"]),
                clock_sec=int(data["clock_sec"]),
                clock_nsec=int(data["clock_nsec"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"invalid time offset report: {data!r}") from exc

    def delta(self) -> Tuple[int, int]:
        """Return ``clock - real`` as a normalised ``(seconds, nanoseconds)`` pair."""

        sec = self.clock_sec - self.real_sec
        nsec = self.clock_nsec - self.real_nsec
        if sec >= 1 or (sec == 0 and nsec >= 0):
            if nsec >= 1_000_000_000:
                nsec -= 1_000_000_000
                sec += 1
            elif nsec < 0:
                nsec += 1_000_000_000
                sec -= 1
        else:
            if nsec <= -1_000_000_000:
                nsec += 1_000_000_000
                sec -= 1
            elif nsec > 0:
                nsec -= 1_000_000_000
                sec += 1
        return sec, nsec

    def seconds(self) -> float:
        sec, nsec = self.delta()
        return float(sec) + nsec / 1e9


@dataclass(frozen=True, slots=True)
class GpsdReport:
    """The receiver state as it stands after one decoded gpsd object."""

    kind: ReportClass
    mode: FixMode = FixMode.NOT_SEEN
    time: float = 0.0
    satellites_used: int = 0
    satellites_visible: int = 0
    tdop: float = math.nan
    qerr: int = 0
    skyview: Tuple[Satellite, ...] = ()
    toff: Optional[TimeOffset] = None
    pps: Optional[TimeOffset] = None
    error: Optional[str] = None
    version: Optional[str] = None

    @property
    def has_fix(self) -> bool:
        return self.mode > FixMode.NO_FIX


def parse_fix_time(value: Any) -> float:
    """Convert gpsd's ISO-8601 ``time`` (or a bare number) to POSIX seconds."""

    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"invalid fix time: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).timestamp()
    except ValueError as exc:
        raise ProtocolError(f"invalid fix time: {value!r}") from exc


@dataclass
class ReceiverState:
    """Accumulates gpsd objects into the latest known receiver state."""

    mode: FixMode = FixMode.NOT_SEEN
    time: float = 0.0
    satellites_used: int = 0
    satellites_visible: int = 0
    tdop: float = math.nan
    qerr: int = 0
    skyview: List[Satellite] = field(default_factory=list)

    def apply(self, data: Dict[str, Any]) -> GpsdReport:
        """Merge one decoded gpsd object and return the resulting report."""

        raw_class = data.get("class")
        try:
            kind = ReportClass(raw_class)
        except ValueError:
            kind = ReportClass.OTHER

        if kind is ReportClass.ERROR:
            return GpsdReport(kind=kind, error=str(data.get("message", "unknown error")))
        if kind is ReportClass.VERSION:
            major = data.get("proto_major", "?")
            minor = data.get("proto_minor", "?")
            return GpsdReport(kind=kind, version=f"{major}.{minor}")

        toff = pps = None
        if kind is ReportClass.TPV:
            self._apply_tpv(data)
        elif kind is ReportClass.SKY:
            self._apply_sky(data)
        elif kind is ReportClass.TOFF:
            toff = TimeOffset.from_dict(data)
        elif kind is ReportClass.PPS:
            pps = TimeOffset.from_dict(data)
            if "qErr" in data:
                self.qerr = self._int(data, "qErr")

        return GpsdReport(
            kind=kind,
            mode=self.mode,
            time=self.time,
            satellites_used=self.satellites_used,
            satellites_visible=self.satellites_visible,
            tdop=self.tdop,
            qerr=self.qerr,
            skyview=tuple(self.skyview),
            toff=toff,
            pps=pps,
        )

    def _apply_tpv(self, data: Dict[str, Any]) -> None:
        # validate the whole frame before touching the accumulated state
        try:
            mode = FixMode(int(data.get("mode", FixMode.NOT_SEEN)))
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"invalid fix mode: {data.get('mode')!r}") from exc
        fix_time = self.time
        if data.get("time") is not None:
            fix_time = parse_fix_time(data["time"])
        qerr = self._int(data, "qErr") if "qErr" in data else self.qerr

        self.mode = mode
        self.time = fix_time
        self.qerr = qerr

    def _apply_sky(self, data: Dict[str, Any]) -> None:
        skyview = self.skyview
        visible = self.satellites_visible
        used = self.satellites_used
        tdop = self.tdop

        satellites = data.get("satellites")
        if satellites is not None:
            if not isinstance(satellites, list):
                raise ProtocolError("SKY satellites must be a list")
            skyview = [Satellite.from_dict(item) for item in satellites if isinstance(item, dict)]
            visible = self._int(data, "nSat", len(skyview))
            used = self._int(data, "uSat", sum(1 for satellite in skyview if satellite.used))
        if data.get("tdop") is not None:
            try:
                tdop = float(data["tdop"])
            except (TypeError, ValueError) as exc:
                raise ProtocolError(f"invalid tdop: {data['tdop']!r}") from exc

        self.skyview = skyview
        self.satellites_visible = visible
        self.satellites_used = used
        self.tdop = tdop

    @staticmethod
    def _int(data: Dict[str, Any], key: str, default: int = 0) -> int:
        value = data.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"invalid {key}: {value!r}") from exc

    def reset(self) -> None:
        fresh = ReceiverState()
        self.mode = fresh.mode
        self.time = fresh.time
        self.satellites_used = fresh.satellites_used
        self.satellites_visible = fresh.satellites_visible
        self.tdop = fresh.tdop
        self.qerr = fresh.qerr
        self.skyview = fresh.skyview


__all__ = [
    "FixMode",
    "GpsdReport",
    "ReceiverState",
    "ReportClass",
    "Satellite",
    "TimeOffset",
    "parse_fix_time",
]
