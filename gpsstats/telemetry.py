"""GNSS status snapshots and the change detector that decides what to publish."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from .protocol.reports import FixMode, GpsdReport

LOGGER = logging.getLogger(__name__)

# Indexed by gpsd's ``gnssid``.
CONSTELLATIONS: Tuple[str, ...] = (
    "gps",
    "sbas",
    "galileo",
    "beidou",
    "imes",
    "qzss",
    "glonass",
    "irnss",
)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Compact status of the receiver at the time of the last published change.

    ``constellations`` maps a constellation id to the number of used
    satellites of that system; ids without used satellites are left out.
    """

    time: float
    sats_used: int
    sats_visible: int
    tdop: float
    avg_snr: float
    qerr: int = 0
    constellations: Dict[int, int] = field(default_factory=dict)
    toff: float = 0.0
    pps: float = 0.0

    def constellation_counts(self) -> Tuple[int, ...]:
        return tuple(self.constellations.get(i, 0) for i in range(len(CONSTELLATIONS)))


@dataclass(frozen=True, slots=True)
class Publish:
    snapshot: Snapshot


@dataclass(frozen=True, slots=True)
class NoOp:
    pass


NO_OP = NoOp()

ChangeResult = Union[Publish, NoOp]


class Differ:
    """Keeps the last published :class:`Snapshot` and compares readings to it."""

    def __init__(self) -> None:
        self._last: Optional[Snapshot] = None
        self._toff = 0.0
        self._pps = 0.0

    @property
    def last(self) -> Optional[Snapshot]:
        return self._last

    def note_time_offset(self, seconds: float) -> None:
        self._toff = seconds

    def note_pps_offset(self, seconds: float) -> None:
        self._pps = seconds

    def observe(self, reading: GpsdReport) -> ChangeResult:
        if reading.mode <= FixMode.NO_FIX or reading.satellites_used <= 0:
            return NO_OP

        counts = [0] * len(CONSTELLATIONS)
        snr_total = 0.0
        for satellite in reading.skyview:
            if not satellite.used:
                continue
            if satellite.ss > 1:
                snr_total += satellite.ss
            if satellite.svid != 0 and 0 <= satellite.gnssid < len(CONSTELLATIONS):
                counts[satellite.gnssid] += 1
        avg_snr = snr_total / reading.satellites_used

        last = self._last
        # exact float comparison; an undefined (NaN) TDOP never matches
        if (
            last is not None
            and last.sats_used == reading.satellites_used
            and last.sats_visible == reading.satellites_visible
            and last.tdop == reading.tdop
            and last.avg_snr == avg_snr
            and last.constellation_counts() == tuple(counts)
        ):
            return NO_OP

        snapshot = Snapshot(
            time=reading.time,
            sats_used=reading.satellites_used,
            sats_visible=reading.satellites_visible,
            tdop=reading.tdop,
            avg_snr=avg_snr,
            qerr=reading.qerr,
            constellations={gnssid: count for gnssid, count in enumerate(counts) if count},
            toff=self._toff,
            pps=self._pps,
        )
        self._last = snapshot
        LOGGER.debug(
            "GNSS status changed: %d/%d satellites, tdop=%s, avg snr=%.2f",
            snapshot.sats_used,
            snapshot.sats_visible,
            snapshot.tdop,
            snapshot.avg_snr,
        )
        return Publish(snapshot)


__all__ = [
    "CONSTELLATIONS",
    "ChangeResult",
    "Differ",
    "NO_OP",
    "NoOp",
    "Publish",
    "Snapshot",
]
