import socket

import pytest

from gpsstats.events import Readable, Signal, SignalKind, Timer, TimerTask, Writable
from gpsstats.loop import EventLoop


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def received():
    return []


@pytest.fixture
def loop(clock, received):
    event_loop = EventLoop(received.append, clock=clock)
    yield event_loop
    event_loop.close()


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    yield left, right
    left.close()
    right.close()


def test_timers_fire_once_due_in_deadline_order(loop, clock, received):
    loop.schedule(5, Timer(TimerTask.HOUSEKEEPING))
    loop.schedule(1, Timer(TimerTask.RECONNECT, "mqtt", 3))

    loop.run_once(timeout=0)
    assert received == []

    clock.now += 5
    loop.run_once(timeout=0)

    assert received == [
        Timer(TimerTask.RECONNECT, "mqtt", 3),
        Timer(TimerTask.HOUSEKEEPING),
    ]
    assert loop.pending_timers() == []


def test_zero_delay_timer_fires_on_next_iteration(loop, received):
    loop.schedule(0, Timer(TimerTask.RECONNECT, "gpsd", 1))

    loop.run_once(timeout=0)

    assert received == [Timer(TimerTask.RECONNECT, "gpsd", 1)]


def test_timer_scheduled_during_dispatch_waits_for_next_iteration(clock):
    seen = []

    def dispatch(event):
        seen.append(event)
        if len(seen) == 1:
            loop.schedule(0, Timer(TimerTask.RECONNECT, "gpsd", 2))

    loop = EventLoop(dispatch, clock=clock)
    loop.schedule(0, Timer(TimerTask.RECONNECT, "gpsd", 1))

    loop.run_once(timeout=0)
    assert len(seen) == 1
    loop.run_once(timeout=0)
    assert seen[-1].generation == 2
    loop.close()


def test_signals_are_delivered_as_events(loop, received):
    loop.deliver_signal(SignalKind.DUMP_STATS)
    loop.deliver_signal(SignalKind.QUIT)

    loop.run_once(timeout=0)

    assert received == [Signal(SignalKind.DUMP_STATS), Signal(SignalKind.QUIT)]


def test_readable_descriptor(loop, received, pair):
    left, right = pair
    loop.watch("gpsd", left.fileno())

    loop.run_once(timeout=0)
    assert received == []

    right.sendall(b"{}\n")
    loop.run_once(timeout=1)

    assert received == [Readable("gpsd")]


def test_write_interest_can_be_toggled(loop, received, pair):
    left, _ = pair
    handler_id = loop.watch("mqtt", left.fileno(), writable=True)

    loop.run_once(timeout=0)
    assert received == [Writable("mqtt")]

    loop.modify(handler_id, writable=False)
    loop.run_once(timeout=0)
    assert received == [Writable("mqtt")]


def test_unwatched_descriptor_is_silent(loop, received, pair):
    left, right = pair
    handler_id = loop.watch("gpsd", left.fileno())
    loop.unwatch(handler_id)
    loop.unwatch(handler_id)

    right.sendall(b"{}\n")
    loop.run_once(timeout=0)

    assert received == []
    assert not loop.is_watching(handler_id)


def test_stop_ends_run_forever(clock):
    def dispatch(event):
        loop.stop()

    loop = EventLoop(dispatch, clock=clock, poll_timeout=0)
    loop.deliver_signal(SignalKind.QUIT)

    loop.run_forever()
    loop.close()


def test_tokens_are_unique(loop):
    assert len({loop.new_token() for _ in range(10)}) == 10


def test_run_once_requires_dispatcher():
    loop = EventLoop()
    with pytest.raises(RuntimeError):
        loop.run_once(timeout=0)
    loop.close()
