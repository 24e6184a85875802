"""Single-threaded host loop: descriptor readiness, timers and OS signals.

Everything the bridge does happens inside :meth:`EventLoop.run_once`, one
event at a time, so the bridge state never needs a lock.  Callers get typed
events (:mod:`gpsstats.events`) instead of raw descriptors.
"""
from __future__ import annotations

import collections
import heapq
import itertools
import logging
import selectors
import signal
import time
from typing import Callable, Deque, Dict, List, Optional, Tuple

from .events import Event, Readable, Signal, SignalKind, Writable

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT_S = 0.25

Dispatcher = Callable[[Event], None]


class EventLoop:
    def __init__(
        self,
        dispatch: Dispatcher | None = None,
        *,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT_S,
        clock: Callable[[], float] | None = None,
        selector: selectors.BaseSelector | None = None,
    ) -> None:
        self._dispatch = dispatch
        self.poll_timeout = poll_timeout
        self._clock: Callable[[], float] = clock or time.monotonic
        self._selector = selector or selectors.DefaultSelector()
        self._watches: Dict[int, Tuple[int, str]] = {}
        self._handler_ids = itertools.count(1)
        self._timers: List[Tuple[float, int, Event]] = []
        self._timer_seq = itertools.count()
        self._tokens = itertools.count(1)
        self._signals: Deque[Signal] = collections.deque()
        self._previous_handlers: Dict[int, object] = {}
        self._running = False

    def set_dispatcher(self, dispatch: Dispatcher) -> None:
        self._dispatch = dispatch

    def now(self) -> float:
        return self._clock()

    # Descriptors ------------------------------------------------------
    def watch(self, conn_id: str, fd: int, *, writable: bool = False) -> int:
        """Start delivering readiness events for ``fd``; returns the handler id."""

        handler_id = next(self._handler_ids)
        self._selector.register(fd, self._mask(writable), data=handler_id)
        self._watches[handler_id] = (fd, conn_id)
        LOGGER.debug("watching fd %d for %s (handler %d)", fd, conn_id, handler_id)
        return handler_id

    def modify(self, handler_id: int, *, writable: bool) -> None:
        entry = self._watches.get(handler_id)
        if entry is None:
            return
        self._selector.modify(entry[0], self._mask(writable), data=handler_id)

    def unwatch(self, handler_id: int) -> None:
        entry = self._watches.pop(handler_id, None)
        if entry is None:
            return
        try:
            self._selector.unregister(entry[0])
        except (KeyError, ValueError):
            LOGGER.debug("fd %d was already gone for handler %d", entry[0], handler_id)

    def is_watching(self, handler_id: int) -> bool:
        return handler_id in self._watches

    @staticmethod
    def _mask(writable: bool) -> int:
        return selectors.EVENT_READ | (selectors.EVENT_WRITE if writable else 0)

    # Timers -----------------------------------------------------------
    def schedule(self, delay: float, event: Event) -> None:
        """Deliver ``event`` once ``delay`` seconds have passed."""

        deadline = self._clock() + max(0.0, delay)
        heapq.heappush(self._timers, (deadline, next(self._timer_seq), event))

    def new_token(self) -> int:
        """Return a number never handed out before by this loop."""

        return next(self._tokens)

    def pending_timers(self) -> List[Event]:
        return [event for _, _, event in sorted(self._timers)]

    # Signals ----------------------------------------------------------
    def install_signal_handlers(self, mapping: Dict[int, SignalKind]) -> None:
        for signum, kind in mapping.items():
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._signal_handler(kind))

    def _signal_handler(self, kind: SignalKind):
        def _handle(signum, frame):  # pragma: no cover - signal handling
            self._signals.append(Signal(kind))

        return _handle

    def deliver_signal(self, kind: SignalKind) -> None:
        self._signals.append(Signal(kind))

    # Running ----------------------------------------------------------
    def run_once(self, timeout: Optional[float] = None) -> None:
        if self._dispatch is None:
            raise RuntimeError("no dispatcher attached to the event loop")

        wait = self.poll_timeout if timeout is None else timeout
        if self._timers:
            wait = min(wait, max(0.0, self._timers[0][0] - self._clock()))
        if self._signals:
            wait = 0.0

        for key, mask in self._selector.select(wait):
            handler_id = key.data
            if mask & selectors.EVENT_READ and handler_id in self._watches:
                self._dispatch(Readable(self._watches[handler_id][1]))
            if mask & selectors.EVENT_WRITE and handler_id in self._watches:
                self._dispatch(Writable(self._watches[handler_id][1]))

        now = self._clock()
        due: List[Event] = []
        while self._timers and self._timers[0][0] <= now:
            due.append(heapq.heappop(self._timers)[2])
        for event in due:
            self._dispatch(event)

        while self._signals:
            self._dispatch(self._signals.popleft())

    def run_forever(self) -> None:
        self._running = True
        while self._running:
            self.run_once()

    def stop(self) -> None:
        self._running = False

    def close(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
        for handler_id in list(self._watches):
            self.unwatch(handler_id)
        self._selector.close()


__all__ = ["EventLoop", "DEFAULT_POLL_TIMEOUT_S"]
