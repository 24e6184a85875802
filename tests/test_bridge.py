import json
import logging

import pytest

from gpsstats.bridge import FEED, HOUSEKEEPING_INTERVAL_S, PUBLISHER, BridgeService
from gpsstats.config import BridgeConfig
from gpsstats.errors import ConfigError, ConnectionFailed, ResourceExhausted
from gpsstats.events import Readable, Signal, SignalKind, Timer, TimerTask, Writable
from gpsstats.protocol.reports import FixMode, GpsdReport, ReportClass, Satellite, TimeOffset
from gpsstats.supervisor import LinkState
from gpsstats.telemetry import NO_OP, Publish


def _sky(used, visible, ss, tdop=1.0):
    return GpsdReport(
        kind=ReportClass.SKY,
        mode=FixMode.FIX_3D,
        time=1700000000.0,
        satellites_used=used,
        satellites_visible=visible,
        tdop=tdop,
        skyview=tuple(Satellite(svid=i + 1, gnssid=0, ss=ss, used=True) for i in range(used)),
    )


class LinkFactory:
    def __init__(self, make_link):
        self.make_link = make_link
        self.built = []
        self.error = None

    def __call__(self, config):
        if self.error is not None:
            raise self.error
        links = (self.make_link("gpsd", fd=3), self.make_link("mqtt", fd=4))
        self.built.append((config, links))
        return links


@pytest.fixture
def factory(make_link):
    return LinkFactory(make_link)


@pytest.fixture
def loader():
    configs = []

    def load():
        if not configs:
            raise ConfigError("failed to open configuration file")
        return configs.pop(0)

    load.configs = configs
    return load


@pytest.fixture
def service(host, stats, factory, loader):
    bridge = BridgeService(
        BridgeConfig(),
        loop=host,
        config_loader=loader,
        link_factory=factory,
        stats=stats,
    )
    bridge.start()
    return bridge


def _links(factory, index=-1):
    return factory.built[index][1]


def test_start_connects_both_links_and_schedules_housekeeping(service, host, factory):
    feed_link, publisher_link = _links(factory)

    assert host.dispatcher == service.dispatch
    assert feed_link.is_open and publisher_link.is_open
    assert service.feed.state is LinkState.CONNECTED
    assert service.publisher.state is LinkState.CONNECTED
    assert (HOUSEKEEPING_INTERVAL_S, Timer(TimerTask.HOUSEKEEPING)) in host.timers


def test_changed_readings_are_published(service, stats, factory):
    feed_link, publisher_link = _links(factory)
    feed_link.reads = [_sky(8, 9, 30.0), _sky(8, 9, 30.0), _sky(7, 9, 28.0, tdop=1.3)]

    service.dispatch(Readable(FEED))

    assert len(publisher_link.sent) == 2
    first = json.loads(publisher_link.sent[0])
    assert first["sats_used"] == 8
    assert first["sats.gps"] == 8
    assert json.loads(publisher_link.sent[1])["tdop"] == 1.3
    assert stats.snapshot(FEED)["events_in"] == 3
    assert stats.snapshot(PUBLISHER)["events_out"] == 2


def test_publish_is_dropped_while_publisher_is_down(host, stats, make_link):
    def links(config):
        publisher = make_link("mqtt", fd=4)
        publisher.open_error = ConnectionFailed("broker unreachable")
        return make_link("gpsd", fd=3), publisher

    service = BridgeService(BridgeConfig(), loop=host, link_factory=links, stats=stats)
    service.start()

    result = service.handle_report(_sky(5, 6, 25.0))

    assert isinstance(result, Publish)
    assert stats.snapshot(PUBLISHER)["events_out"] == 0
    assert host.reconnect_delays(PUBLISHER) == [1]


def test_version_and_error_reports_are_not_published(service, factory, caplog):
    _, publisher_link = _links(factory)

    with caplog.at_level(logging.WARNING):
        assert service.handle_report(GpsdReport(kind=ReportClass.VERSION, version="3.14")) is NO_OP
        assert service.handle_report(GpsdReport(kind=ReportClass.ERROR, error="bad device")) is NO_OP

    assert publisher_link.sent == []
    assert "bad device" in caplog.text


def test_time_offsets_reach_the_payload(service, factory):
    _, publisher_link = _links(factory)

    service.handle_report(
        GpsdReport(kind=ReportClass.TOFF, toff=TimeOffset(100, 0, 100, 250000000))
    )
    service.handle_report(_sky(6, 7, 30.0))

    assert json.loads(publisher_link.sent[-1])["toff"] == 0.25


def test_housekeeping_timer_runs_both_links_and_reschedules(service, host, factory):
    feed_link, publisher_link = _links(factory)
    host.timers.clear()

    service.dispatch(Timer(TimerTask.HOUSEKEEPING))

    assert feed_link.housekeeping_calls == 1
    assert publisher_link.housekeeping_calls == 1
    assert host.timers == [(HOUSEKEEPING_INTERVAL_S, Timer(TimerTask.HOUSEKEEPING))]


def test_reconnect_timer_is_routed_to_its_supervisor(service, host, factory):
    feed_link, _ = _links(factory)
    service.feed.request_reconnect("eof")

    service.dispatch(host.last_reconnect(FEED))

    assert feed_link.open_calls == 2
    assert service.feed.state is LinkState.CONNECTED


def test_writable_is_forwarded(service, factory):
    _, publisher_link = _links(factory)
    calls = []
    publisher_link.handle_write = lambda: calls.append("write")

    service.dispatch(Writable(PUBLISHER))
    service.dispatch(Writable("unknown"))

    assert calls == ["write"]


def test_reload_replaces_links_and_keeps_counters(service, host, stats, factory, loader):
    old_feed, old_publisher = _links(factory)
    new_config = BridgeConfig.from_dict({"mqtt": {"host": "other.local"}})
    loader.configs.append(new_config)

    service.dispatch(Signal(SignalKind.RELOAD))

    new_feed, new_publisher = _links(factory)
    assert service.config is new_config
    assert not old_feed.is_open and not old_publisher.is_open
    assert new_feed.is_open and new_publisher.is_open
    assert service.feed.link is new_feed
    assert stats.snapshot(FEED)["connects"] == 2
    assert stats.snapshot(FEED)["disconnects"] == 1
    assert len(host.watched(FEED)) == 1


def test_failed_reload_keeps_running_links(service, factory, caplog):
    feed = service.feed

    with caplog.at_level(logging.ERROR):
        assert service.reload() is False

    assert service.feed is feed
    assert feed.state is LinkState.CONNECTED
    assert len(factory.built) == 1
    assert "keeping current settings" in caplog.text


def test_invalid_links_on_reload_keep_running_links(service, factory, loader):
    loader.configs.append(BridgeConfig())
    factory.error = ConfigError("failed to set TLS settings")

    assert service.reload() is False
    assert _links(factory)[0].is_open


def test_reconnect_timer_from_before_reload_is_ignored(service, host, factory, loader):
    old_feed, _ = _links(factory)
    service.feed.request_reconnect("eof")
    stale = host.last_reconnect(FEED)
    loader.configs.append(BridgeConfig())
    service.reload()
    new_feed, _ = _links(factory)

    service.dispatch(stale)

    assert new_feed.open_calls == 1
    assert old_feed.open_calls == 1


def test_dump_stats_reports_every_connection(service, factory, caplog):
    feed_link, _ = _links(factory)
    feed_link.reads = [_sky(3, 4, 20.0)]
    service.dispatch(Readable(FEED))

    with caplog.at_level(logging.INFO):
        service.dispatch(Signal(SignalKind.DUMP_STATS))
        report = service.dump_stats()

    assert report[FEED]["events_in"] == 1
    assert report[PUBLISHER]["events_out"] == 1
    assert "gpsd: state=connected connects=1" in caplog.text


def test_quit_stops_the_loop(service, host):
    service.dispatch(Signal(SignalKind.QUIT))

    assert host.stopped is True


def test_resource_exhaustion_disconnects_without_retry(service, host, factory):
    _, publisher_link = _links(factory)
    publisher_link.send_error = ResourceExhausted("out of memory")

    assert service.publish(service.differ.observe(_sky(5, 5, 30.0)).snapshot) is False

    assert service.publisher.state is LinkState.DISCONNECTED
    assert not publisher_link.is_open
    assert host.reconnect_delays(PUBLISHER) == []


def test_stop_closes_everything(service, factory):
    feed_link, publisher_link = _links(factory)

    service.stop()

    assert feed_link.close_calls == 1
    assert publisher_link.close_calls == 1
    assert service.feed is None and service.publisher is None
