from gpsstats.stats import StatEvent, StatsRegistry


def test_unknown_connection_reports_zeroes():
    assert StatsRegistry().snapshot("mqtt") == {
        "connects": 0,
        "disconnects": 0,
        "events_in": 0,
        "events_out": 0,
        "last_event_time": None,
    }


def test_counters_are_kept_per_connection():
    now = iter([10.0, 20.0, 30.0])
    registry = StatsRegistry(clock=lambda: next(now))

    registry.record("gpsd", StatEvent.CONNECT)
    registry.record("gpsd", StatEvent.RECEIVE)
    registry.record("gpsd", StatEvent.RECEIVE)
    registry.record("mqtt", StatEvent.CONNECT)
    registry.record("mqtt", StatEvent.SEND)
    registry.record("mqtt", StatEvent.DISCONNECT)

    assert registry.snapshot("gpsd") == {
        "connects": 1,
        "disconnects": 0,
        "events_in": 2,
        "events_out": 0,
        "last_event_time": 20.0,
    }
    assert registry.snapshot("mqtt")["events_out"] == 1
    assert registry.snapshot("mqtt")["disconnects"] == 1
    assert registry.snapshot("mqtt")["last_event_time"] == 30.0
    assert registry.connections() == ["gpsd", "mqtt"]


def test_connection_events_do_not_touch_last_event_time():
    registry = StatsRegistry(clock=lambda: 5.0)

    registry.record("gpsd", StatEvent.CONNECT)
    registry.record("gpsd", StatEvent.DISCONNECT)

    assert registry.snapshot("gpsd")["last_event_time"] is None
