"""High level orchestration for the gpsstats bridge."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from .config import BridgeConfig, load_config
from .errors import ConfigError, ResourceExhausted
from .events import Event, Readable, Signal, SignalKind, Timer, TimerTask, Writable
from .loop import EventLoop
from .protocol.codec import PayloadEncoder
from .protocol.reports import GpsdReport, ReportClass
from .stats import StatsRegistry
from .supervisor import ConnectionSupervisor
from .telemetry import NO_OP, ChangeResult, Differ, Publish, Snapshot
from .transport.base import Link
from .transport.gpsd import GpsdLink
from .transport.mqtt import MqttLink

LOGGER = logging.getLogger(__name__)

FEED = "gpsd"
PUBLISHER = "mqtt"
HOUSEKEEPING_INTERVAL_S = 5

LinkFactory = Callable[[BridgeConfig], Tuple[Link, Link]]


def build_links(config: BridgeConfig) -> Tuple[Link, Link]:
    """Create the positioning feed and bus publisher links for ``config``."""

    return GpsdLink(config.gpsd), MqttLink(config.mqtt)


class BridgeService:
    """Wire gpsd to the MQTT broker and react to the host loop's events.

    All mutable state (both supervisors, the differ and the counters) lives
    on this object and is only touched from :meth:`dispatch`.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        loop: EventLoop | None = None,
        config_loader: Callable[[], BridgeConfig] | None = None,
        link_factory: LinkFactory | None = None,
        stats: StatsRegistry | None = None,
    ) -> None:
        self.config = config
        self.loop = loop or EventLoop()
        self.loop.set_dispatcher(self.dispatch)
        self._config_loader = config_loader or self._load_config
        self._link_factory = link_factory or build_links
        self.stats = stats or StatsRegistry()
        self.differ = Differ()
        self.encoder = PayloadEncoder()
        self.feed: Optional[ConnectionSupervisor] = None
        self.publisher: Optional[ConnectionSupervisor] = None

    # Lifecycle --------------------------------------------------------
    def start(self) -> None:
        """Build both supervisors and start connecting.

        Raises :class:`~gpsstats.errors.ConfigError` when the links cannot
        be built from the configuration.
        """

        LOGGER.info("starting gpsstats bridge")
        self._install(self._link_factory(self.config))
        self._connect_all()
        self.loop.schedule(HOUSEKEEPING_INTERVAL_S, Timer(TimerTask.HOUSEKEEPING))

    def stop(self) -> None:
        LOGGER.info("stopping gpsstats bridge")
        self._teardown()

    def reload(self) -> bool:
        LOGGER.info("reloading configuration")
        try:
            config = self._config_loader()
            links = self._link_factory(config)
        except ConfigError as exc:
            LOGGER.error("configuration reload failed, keeping current settings: %s", exc)
            return False
        self._teardown()
        self.config = config
        self._install(links)
        self._connect_all()
        return True

    # Event dispatch ---------------------------------------------------
    def dispatch(self, event: Event) -> None:
        if isinstance(event, Readable):
            self._on_readable(event.conn_id)
        elif isinstance(event, Writable):
            supervisor = self._supervisor(event.conn_id)
            if supervisor is not None:
                self._guarded(supervisor, supervisor.on_writable)
        elif isinstance(event, Timer):
            self._on_timer(event)
        elif isinstance(event, Signal):
            self._on_signal(event.kind)
        else:  # pragma: no cover
            LOGGER.warning("ignoring unknown event %r", event)

    def _on_readable(self, conn_id: str) -> None:
        supervisor = self._supervisor(conn_id)
        if supervisor is None:
            return
        items = self._guarded(supervisor, supervisor.on_readable) or []
        if supervisor is self.feed:
            for report in items:
                self.handle_report(report)

    def _on_timer(self, event: Timer) -> None:
        if event.task is TimerTask.HOUSEKEEPING:
            self.housekeeping()
            self.loop.schedule(HOUSEKEEPING_INTERVAL_S, Timer(TimerTask.HOUSEKEEPING))
            return
        supervisor = self._supervisor(event.conn_id or "")
        if supervisor is not None:
            self._guarded(supervisor, supervisor.on_timer, event.generation)

    def _on_signal(self, kind: SignalKind) -> None:
        if kind is SignalKind.RELOAD:
            self.reload()
        elif kind is SignalKind.DUMP_STATS:
            self.dump_stats()
        elif kind is SignalKind.QUIT:
            LOGGER.info("termination requested")
            self.loop.stop()

    # Telemetry --------------------------------------------------------
    def handle_report(self, report: GpsdReport) -> ChangeResult:
        if report.kind is ReportClass.VERSION:
            LOGGER.debug("Connected to GPSD with protocol v%s", report.version)
            return NO_OP
        if report.kind is ReportClass.ERROR:
            LOGGER.warning("GPSD returned: %s", report.error)
            return NO_OP
        if report.toff is not None:
            self.differ.note_time_offset(report.toff.seconds())
        if report.pps is not None:
            self.differ.note_pps_offset(report.pps.seconds())

        result = self.differ.observe(report)
        if isinstance(result, Publish):
            self.publish(result.snapshot)
        return result

    def publish(self, snapshot: Snapshot) -> bool:
        if self.publisher is None:
            return False
        payload = self.encoder.encode(snapshot)
        return bool(self._guarded(self.publisher, self.publisher.send, payload))

    def housekeeping(self) -> None:
        for supervisor in (self.publisher, self.feed):
            if supervisor is not None:
                self._guarded(supervisor, supervisor.housekeeping)

    def dump_stats(self) -> Dict[str, Dict[str, Any]]:
        report: Dict[str, Dict[str, Any]] = {}
        for conn_id, supervisor in ((FEED, self.feed), (PUBLISHER, self.publisher)):
            snapshot = self.stats.snapshot(conn_id)
            report[conn_id] = snapshot
            LOGGER.info(
                "%s: state=%s connects=%d disconnects=%d events_in=%d events_out=%d last_event=%s",
                conn_id,
                supervisor.state.value if supervisor else "absent",
                snapshot["connects"],
                snapshot["disconnects"],
                snapshot["events_in"],
                snapshot["events_out"],
                snapshot["last_event_time"],
            )
        return report

    # Helpers ----------------------------------------------------------
    def _load_config(self) -> BridgeConfig:
        return load_config(self.config.source)

    def _supervisor(self, conn_id: str) -> Optional[ConnectionSupervisor]:
        if conn_id == FEED:
            return self.feed
        if conn_id == PUBLISHER:
            return self.publisher
        return None

    def _install(self, links: Tuple[Link, Link]) -> None:
        feed_link, publisher_link = links
        self.feed = ConnectionSupervisor(FEED, feed_link, self.loop, self.stats)
        self.publisher = ConnectionSupervisor(PUBLISHER, publisher_link, self.loop, self.stats)

    def _connect_all(self) -> None:
        for supervisor in (self.feed, self.publisher):
            if supervisor is not None:
                self._guarded(supervisor, supervisor.connect)

    def _teardown(self) -> None:
        for supervisor in (self.feed, self.publisher):
            if supervisor is not None:
                supervisor.disconnect()
        self.feed = None
        self.publisher = None

    def _guarded(self, supervisor: ConnectionSupervisor, action: Callable[..., Any], *args: Any) -> Any:
        try:
            return action(*args)
        except ResourceExhausted as exc:
            LOGGER.error(
                "%s: %s; staying disconnected until the next reload",
                supervisor.conn_id,
                exc,
            )
            supervisor.disconnect()
            return None


__all__ = ["BridgeService", "FEED", "HOUSEKEEPING_INTERVAL_S", "PUBLISHER", "build_links"]
