"""MQTT publisher link built on paho-mqtt, driven by the bridge's own event loop."""
from __future__ import annotations

import logging
import ssl
from typing import Any, Callable, List, Optional

import paho.mqtt.client as mqtt

from .base import Link
from ..config import MqttConfig, MqttTlsConfig
from ..errors import (
    ConfigError,
    ConnectionFailed,
    ConnectionLost,
    ProtocolError,
    ResourceExhausted,
)

LOGGER = logging.getLogger(__name__)

_ERR = mqtt.MQTTErrorCode

# Result codes that mean the broker connection is gone rather than one
# request having failed.
RECONNECT_CODES = frozenset(
    {
        _ERR.MQTT_ERR_NO_CONN,
        _ERR.MQTT_ERR_CONN_REFUSED,
        _ERR.MQTT_ERR_CONN_LOST,
        _ERR.MQTT_ERR_TLS,
        _ERR.MQTT_ERR_AUTH,
        _ERR.MQTT_ERR_UNKNOWN,
        _ERR.MQTT_ERR_KEEPALIVE,
    }
)

_TLS_VERSIONS = {
    "tlsv1.2": ssl.TLSVersion.TLSv1_2,
    "tlsv1.3": ssl.TLSVersion.TLSv1_3,
}

ClientFactory = Callable[[MqttConfig], Any]

CONNECT_TIMEOUT_S = 2.0


def build_tls_context(tls: MqttTlsConfig) -> ssl.SSLContext:
    """Create the client TLS context, failing early on unreadable certificates."""

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = _TLS_VERSIONS[tls.tls_version]
    try:
        context.load_verify_locations(cafile=tls.ca_cert_file, capath=tls.ca_cert_path)
        if tls.cert_file:
            context.load_cert_chain(tls.cert_file, tls.key_file)
        if tls.ciphers:
            context.set_ciphers(tls.ciphers)
    except (OSError, ssl.SSLError) as exc:
        raise ConfigError(f"failed to set TLS settings: {exc}") from exc
    if not tls.verify_peer:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _default_client_factory(config: MqttConfig) -> mqtt.Client:
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=config.client_id,
        clean_session=True,
    )


def _describe(rc: Any) -> str:
    try:
        return mqtt.error_string(rc)
    except Exception:  # pragma: no cover - unknown codes
        return str(rc)


class MqttLink(Link):
    """Publish status payloads on a fixed topic.

    The paho client runs without its network thread: the supervisor feeds
    readiness events into :meth:`handle_read`/:meth:`handle_write` and the
    periodic housekeeping tick into :meth:`housekeeping`.
    """

    def __init__(
        self,
        config: MqttConfig,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__("mqtt")
        self.config = config
        self._client_factory = client_factory or _default_client_factory
        self._tls_context: Optional[ssl.SSLContext] = (
            build_tls_context(config.tls) if config.tls else None
        )
        self._client: Any = None
        self._open = False

    @property
    def client(self) -> Any:
        return self._client

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            client = self._client_factory(self.config)
        except MemoryError as exc:
            raise ResourceExhausted("failed to create MQTT handle: out of memory!") from exc

        if self._tls_context is not None:
            LOGGER.debug("setting up TLS parameters on MQTT client")
            client.tls_set_context(self._tls_context)
            client.tls_insecure_set(not self.config.tls.verify_peer)
        if self.config.auth is not None:
            LOGGER.debug("setting up authentication on MQTT client")
            client.username_pw_set(self.config.auth.username, self.config.auth.password)

        # connect() blocks the host loop; keep it as short as the gpsd one
        client.connect_timeout = CONNECT_TIMEOUT_S
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_log = self._on_log
        self._client = client
        return client

    # Link API ---------------------------------------------------------
    def open(self) -> None:
        client = self._ensure_client()
        try:
            rc = client.connect(self.config.host, self.config.port, self.config.keepalive)
        except MemoryError as exc:
            raise ResourceExhausted("out of memory while connecting to MQTT broker") from exc
        except (OSError, ValueError) as exc:
            raise ConnectionFailed(f"failed to connect to MQTT broker: {exc}") from exc
        if rc != _ERR.MQTT_ERR_SUCCESS:
            raise ConnectionFailed(f"failed to connect to MQTT broker: {_describe(rc)}")
        self._open = True

    def close(self) -> None:
        if not self._open or self._client is None:
            return
        self._open = False
        client = self._client
        rc = client.disconnect()
        if rc not in (_ERR.MQTT_ERR_SUCCESS, _ERR.MQTT_ERR_NO_CONN):
            LOGGER.warning("failed to disconnect from MQTT broker: %s", _describe(rc))
        # paho closes the socket once the DISCONNECT packet is written
        client.loop_write()

    def fileno(self) -> int:
        sock = self._client.socket() if self._client is not None else None
        if sock is None:
            raise ConnectionLost("MQTT link has no socket")
        return sock.fileno()

    def wants_write(self) -> bool:
        return bool(self._client is not None and self._client.want_write())

    def handle_read(self) -> List[Any]:
        self._check(self._client.loop_read(), "failed to read MQTT messages")
        return []

    def handle_write(self) -> None:
        self._check(self._client.loop_write(), "failed to write MQTT messages")

    def housekeeping(self) -> None:
        if self._client is None:
            return
        self._check(self._client.loop_misc(), "failed to run misc loop of MQTT")

    def send(self, payload: bytes) -> None:
        client = self._ensure_client()
        LOGGER.debug("publishing event %s", payload)
        try:
            info = client.publish(
                self.config.topic,
                payload,
                qos=self.config.qos,
                retain=self.config.retain,
            )
        except ValueError as exc:
            raise ProtocolError(f"failed to publish data to MQTT broker: {exc}") from exc
        self._check(info.rc, "failed to publish data to MQTT broker")

    def describe(self) -> str:
        return f"mqtt {self.config.host}:{self.config.port}"

    # Helpers ----------------------------------------------------------
    @staticmethod
    def _check(rc: Any, action: str) -> None:
        if rc == _ERR.MQTT_ERR_SUCCESS:
            return
        message = f"{action}: {_describe(rc)}"
        if rc in RECONNECT_CODES:
            raise ConnectionLost(message)
        if rc == _ERR.MQTT_ERR_NOMEM:
            raise ResourceExhausted(message)
        raise ProtocolError(message)

    # paho callbacks -------------------------------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if getattr(reason_code, "is_failure", False):
            LOGGER.warning("unable to connect to MQTT broker. Reason: %s", reason_code)
        else:
            LOGGER.info("successfully connected to MQTT broker")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if getattr(reason_code, "is_failure", False):
            LOGGER.info("disconnected from MQTT broker. Reason: %s", reason_code)
        else:
            LOGGER.info("disconnected from MQTT broker.")

    def _on_log(self, client, userdata, level, buf) -> None:
        LOGGER.debug("paho: %s", buf)


__all__ = ["MqttLink", "RECONNECT_CODES", "build_tls_context"]
