import itertools

import pytest

from gpsstats.events import TimerTask
from gpsstats.stats import StatsRegistry
from gpsstats.transport.base import Link


class FakeHost:
    """Stands in for the event loop: records watches and scheduled timers."""

    def __init__(self):
        self.clock = 0.0
        self.watches = {}
        self.modified = []
        self.timers = []
        self.dispatcher = None
        self.stopped = False
        self._ids = itertools.count(1)
        self._tokens = itertools.count(1)

    def set_dispatcher(self, dispatch):
        self.dispatcher = dispatch

    def now(self):
        return self.clock

    def watch(self, conn_id, fd, *, writable=False):
        handler_id = next(self._ids)
        self.watches[handler_id] = (conn_id, fd, writable)
        return handler_id

    def modify(self, handler_id, *, writable):
        conn_id, fd, _ = self.watches[handler_id]
        self.watches[handler_id] = (conn_id, fd, writable)
        self.modified.append((handler_id, writable))

    def unwatch(self, handler_id):
        self.watches.pop(handler_id, None)

    def schedule(self, delay, event):
        self.timers.append((delay, event))

    def new_token(self):
        return next(self._tokens)

    def stop(self):
        self.stopped = True

    def watched(self, conn_id):
        return [hid for hid, entry in self.watches.items() if entry[0] == conn_id]

    def reconnects(self, conn_id):
        return [
            (delay, event)
            for delay, event in self.timers
            if event.task is TimerTask.RECONNECT and event.conn_id == conn_id
        ]

    def reconnect_delays(self, conn_id):
        return [delay for delay, _ in self.reconnects(conn_id)]

    def last_reconnect(self, conn_id):
        return self.reconnects(conn_id)[-1][1]


class FakeLink(Link):
    def __init__(self, name="fake", fd=10):
        super().__init__(name)
        self.fd = fd
        self.open_error = None
        self.open_errors = []
        self.open_calls = 0
        self.close_calls = 0
        self.is_open = False
        self.reads = []
        self.read_error = None
        self.sent = []
        self.send_error = None
        self.write_wanted = False
        self.housekeeping_calls = 0
        self.housekeeping_error = None

    def open(self):
        self.open_calls += 1
        if self.open_errors:
            raise self.open_errors.pop(0)
        if self.open_error is not None:
            raise self.open_error
        self.is_open = True

    def close(self):
        self.close_calls += 1
        self.is_open = False

    def fileno(self):
        return self.fd

    def wants_write(self):
        return self.write_wanted

    def handle_read(self):
        if self.read_error is not None:
            error, self.read_error = self.read_error, None
            raise error
        items, self.reads = self.reads, []
        return items

    def send(self, payload):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)

    def housekeeping(self):
        self.housekeeping_calls += 1
        if self.housekeeping_error is not None:
            raise self.housekeeping_error


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def stats():
    return StatsRegistry(clock=lambda: 1_600_000_000.0)


@pytest.fixture
def make_link():
    return FakeLink
