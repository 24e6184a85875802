"""Reconnect-with-backoff state machine shared by every supervised link."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ConnectionFailed, ConnectionLost, ProtocolError, ResourceExhausted
from .events import Timer, TimerTask
from .loop import EventLoop
from .stats import StatEvent, StatsRegistry
from .transport.base import Link

LOGGER = logging.getLogger(__name__)

MIN_RECONNECT_DELAY_S = 1
MAX_RECONNECT_DELAY_S = 32


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"


class Backoff:
    """Exponential delay: 1, 2, 4, ... capped at ``maximum``."""

    def __init__(
        self,
        minimum: int = MIN_RECONNECT_DELAY_S,
        maximum: int = MAX_RECONNECT_DELAY_S,
    ) -> None:
        self.minimum = minimum
        self.maximum = maximum
        self._current = minimum

    @property
    def current(self) -> int:
        return self._current

    def next_delay(self) -> int:
        delay = self._current
        if self._current < self.maximum:
            self._current = min(self._current * 2, self.maximum)
        return delay

    def reset(self) -> None:
        self._current = self.minimum


class ConnectionSupervisor:
    """Keep one :class:`~gpsstats.transport.base.Link` connected.

    The supervisor owns the link and the host loop's handler id for its
    descriptor.  Lost connections are never re-opened inline: a reconnect
    is scheduled on the host loop as a :class:`~gpsstats.events.Timer`
    carrying a generation number, and any timer whose generation no longer
    matches (because a reload or a newer request superseded it) is ignored.

    Failed opens and lost connections share one backoff.  It only resets
    after the link delivered a successful read, so a peer that accepts and
    immediately drops the connection is retried at 1, 2, 4, ... seconds.
    """

    def __init__(
        self,
        conn_id: str,
        link: Link,
        host: EventLoop,
        stats: StatsRegistry,
        *,
        backoff: Backoff | None = None,
    ) -> None:
        self.conn_id = conn_id
        self.link = link
        self.host = host
        self.stats = stats
        self.backoff = backoff or Backoff()
        self.state = LinkState.DISCONNECTED
        self.next_retry_at: Optional[float] = None
        self._handler_id: Optional[int] = None
        self._link_open = False
        self._write_interest = False
        self._retry_generation: Optional[int] = None

    @property
    def handler_id(self) -> Optional[int]:
        return self._handler_id

    @property
    def connected(self) -> bool:
        return self.state is LinkState.CONNECTED

    # Lifecycle --------------------------------------------------------
    def connect(self) -> bool:
        """Open the link; on failure schedule the next attempt with backoff."""

        if self.state is LinkState.CONNECTED:
            return True
        self._retry_generation = None
        self.next_retry_at = None
        self.state = LinkState.CONNECTING
        try:
            self.link.open()
            self._link_open = True
            fd = self.link.fileno()
        except ResourceExhausted:
            self._close_link(record=False)
            self.state = LinkState.DISCONNECTED
            raise
        except (ConnectionFailed, ConnectionLost) as exc:
            LOGGER.warning("%s: %s", self.conn_id, exc)
            self._close_link(record=False)
            self._schedule_retry(self.backoff.next_delay())
            return False

        self._write_interest = self.link.wants_write()
        self._handler_id = self.host.watch(self.conn_id, fd, writable=self._write_interest)
        self.state = LinkState.CONNECTED
        self.stats.record(self.conn_id, StatEvent.CONNECT)
        LOGGER.info("%s: connected to %s", self.conn_id, self.link.describe())
        return True

    def disconnect(self) -> None:
        """Close the link if it is open.  Never raises."""

        self._retry_generation = None
        self.next_retry_at = None
        self._unwatch()
        self._close_link(record=True)
        self.state = LinkState.DISCONNECTED

    def request_reconnect(self, reason: str) -> None:
        if self.state is LinkState.RECONNECT_SCHEDULED:
            return
        if self.state is LinkState.DISCONNECTED:
            LOGGER.debug("%s: ignoring reconnect request while disconnected", self.conn_id)
            return
        LOGGER.warning("%s: connection lost (%s), reconnecting", self.conn_id, reason)
        # stop readiness events for a socket that is about to be torn down
        self._unwatch()
        self._schedule_retry(self.backoff.next_delay())

    def on_timer(self, generation: int) -> bool:
        """Run a scheduled reconnect; stale timers are ignored."""

        if generation != self._retry_generation or self.state is not LinkState.RECONNECT_SCHEDULED:
            LOGGER.debug("%s: ignoring stale reconnect timer %d", self.conn_id, generation)
            return False
        self.disconnect()
        return self.connect()

    # I/O --------------------------------------------------------------
    def on_readable(self) -> List[Any]:
        if self.state is not LinkState.CONNECTED:
            return []
        try:
            items = self.link.handle_read()
        except ConnectionLost as exc:
            self.request_reconnect(str(exc))
            return []
        except ProtocolError as exc:
            LOGGER.warning("%s: %s", self.conn_id, exc)
            items = []
        else:
            # the peer is talking, so the connection counts as established
            self.backoff.reset()
        for _ in items:
            self.stats.record(self.conn_id, StatEvent.RECEIVE)
        self._sync_write_interest()
        return items

    def on_writable(self) -> None:
        if self.state is not LinkState.CONNECTED:
            return
        try:
            self.link.handle_write()
        except ConnectionLost as exc:
            self.request_reconnect(str(exc))
            return
        except ProtocolError as exc:
            LOGGER.warning("%s: %s", self.conn_id, exc)
        self._sync_write_interest()

    def send(self, payload: bytes) -> bool:
        """Hand ``payload`` to the link; dropped (not queued) unless connected."""

        if self.state is not LinkState.CONNECTED:
            LOGGER.debug("%s: not connected, dropping event", self.conn_id)
            return False
        try:
            self.link.send(payload)
        except ConnectionLost as exc:
            self.request_reconnect(str(exc))
            return False
        except ProtocolError as exc:
            LOGGER.warning("%s: %s", self.conn_id, exc)
            return False
        self.stats.record(self.conn_id, StatEvent.SEND)
        self._sync_write_interest()
        return True

    def housekeeping(self) -> None:
        try:
            self.link.housekeeping()
        except ConnectionLost as exc:
            if self.state is LinkState.CONNECTED:
                self.request_reconnect(str(exc))
            else:
                LOGGER.debug("%s: housekeeping while %s: %s", self.conn_id, self.state.value, exc)
        except ProtocolError as exc:
            LOGGER.warning("%s: %s", self.conn_id, exc)
        self._sync_write_interest()

    def stats_snapshot(self) -> Dict[str, Any]:
        return self.stats.snapshot(self.conn_id)

    # Helpers ----------------------------------------------------------
    def _schedule_retry(self, delay: float) -> None:
        generation = self.host.new_token()
        self._retry_generation = generation
        self.state = LinkState.RECONNECT_SCHEDULED
        self.next_retry_at = self.host.now() + delay
        self.host.schedule(delay, Timer(TimerTask.RECONNECT, self.conn_id, generation))
        LOGGER.info("%s: next connection attempt in %s s", self.conn_id, delay)

    def _unwatch(self) -> None:
        if self._handler_id is not None:
            self.host.unwatch(self._handler_id)
            self._handler_id = None
            self._write_interest = False

    def _close_link(self, *, record: bool) -> None:
        if not self._link_open:
            return
        self._link_open = False
        try:
            self.link.close()
        except Exception as exc:  # pragma: no cover - best effort close
            LOGGER.warning("%s: error while disconnecting: %s", self.conn_id, exc)
        if record:
            self.stats.record(self.conn_id, StatEvent.DISCONNECT)
            LOGGER.info("%s: disconnected from %s", self.conn_id, self.link.describe())

    def _sync_write_interest(self) -> None:
        if self._handler_id is None:
            return
        wants = self.link.wants_write()
        if wants != self._write_interest:
            self.host.modify(self._handler_id, writable=wants)
            self._write_interest = wants


__all__ = [
    "Backoff",
    "ConnectionSupervisor",
    "LinkState",
    "MAX_RECONNECT_DELAY_S",
    "MIN_RECONNECT_DELAY_S",
]
