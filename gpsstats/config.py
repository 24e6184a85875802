"""Configuration model for the gpsstats bridge.

The configuration lives in a small YAML document with three sections::

    daemon:
      user: nobody
    gpsd:
      host: localhost
      port: 2947
      device: /dev/ttyACM0
    mqtt:
      client_id: gpsstats
      host: broker.local
      port: 8883
      qos: 1
      retain: false
      auth:
        username: gps
        password: secret
      tls:
        ca_cert_file: /etc/ssl/certs/ca.pem

Every value is optional.  Any key below ``auth`` enables authentication
and any key below ``tls`` enables TLS.

The ``daemon`` section is accepted so existing configuration files keep
loading, but it is ignored: the bridge never changes its user or group.
Run it under the desired account instead.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .paths import CONFIG_FILE

LOGGER = logging.getLogger(__name__)

DEFAULT_GPSD_PORT = 2947
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TLS_PORT = 8883
DEFAULT_TOPIC = "gpsstats"
TLS_VERSIONS = ("tlsv1.2", "tlsv1.3")


def _to_bool(value: Any, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes"}
    raise ConfigError(f"invalid boolean for {key}: {value!r}")


def _to_port(value: Any, *, what: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        port = -1
    if port < 1 or port > 65535:
        raise ConfigError(f"invalid {what} port: {value!r}. Use a port between 1 and 65535!")
    return port


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def _check_keys(section: str, data: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"unexpected key(s) in {section}: {', '.join(unknown)}")


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"section {name} must be a mapping")
    return value


@dataclass(slots=True)
class DaemonConfig:
    """Accepted for compatibility with older files; never applied."""

    user: str = "nobody"
    group: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DaemonConfig":
        _check_keys("daemon", data, {"user", "group"})
        return cls(
            user=_to_str(data.get("user")) or "nobody",
            group=_to_str(data.get("group")),
        )


@dataclass(slots=True)
class GpsdConfig:
    host: str = "localhost"
    port: int = DEFAULT_GPSD_PORT
    device: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GpsdConfig":
        _check_keys("gpsd", data, {"host", "port", "device"})
        port = data.get("port")
        return cls(
            host=_to_str(data.get("host")) or "localhost",
            port=_to_port(port, what="GPSD server") if port is not None else DEFAULT_GPSD_PORT,
            device=_to_str(data.get("device")),
        )


@dataclass(slots=True)
class MqttAuthConfig:
    username: str
    password: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MqttAuthConfig":
        _check_keys("mqtt.auth", data, {"username", "password"})
        username = _to_str(data.get("username"))
        password = _to_str(data.get("password"))
        if (username is None) != (password is None):
            raise ConfigError("need both username and password for proper authentication!")
        if username is None:
            raise ConfigError("mqtt.auth requires username and password")
        return cls(username=username, password=password)

    def __repr__(self) -> str:
        return f"MqttAuthConfig(username={self.username!r}, password='***')"


@dataclass(slots=True)
class MqttTlsConfig:
    ca_cert_path: Optional[str] = None
    ca_cert_file: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    tls_version: str = "tlsv1.2"
    ciphers: Optional[str] = None
    verify_peer: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MqttTlsConfig":
        _check_keys(
            "mqtt.tls",
            data,
            {
                "ca_cert_path",
                "ca_cert_file",
                "cert_file",
                "key_file",
                "tls_version",
                "ciphers",
                "verify_peer",
            },
        )
        tls = cls(
            ca_cert_path=_to_str(data.get("ca_cert_path")),
            ca_cert_file=_to_str(data.get("ca_cert_file")),
            cert_file=_to_str(data.get("cert_file")),
            key_file=_to_str(data.get("key_file")),
            tls_version=(_to_str(data.get("tls_version")) or "tlsv1.2").lower(),
            ciphers=_to_str(data.get("ciphers")),
            verify_peer=_to_bool(data.get("verify_peer", True), key="mqtt.tls.verify_peer"),
        )
        if tls.tls_version not in TLS_VERSIONS:
            raise ConfigError(
                f"unsupported TLS version: {tls.tls_version}. Use one of {', '.join(TLS_VERSIONS)}!"
            )
        if not tls.ca_cert_path and not tls.ca_cert_file:
            raise ConfigError("need either ca_cert_path or ca_cert_file to be set!")
        if (tls.cert_file is None) != (tls.key_file is None):
            raise ConfigError("need both cert_file and key_file for proper TLS operation!")
        if not tls.verify_peer:
            LOGGER.warning(
                "insecure TLS operation used: verify_peer = false! Potential MITM vulnerability!"
            )
        return tls


@dataclass(slots=True)
class MqttConfig:
    client_id: str = "gpsstats"
    host: str = "localhost"
    port: int = DEFAULT_MQTT_PORT
    qos: int = 1
    retain: bool = False
    keepalive: int = 60
    topic: str = DEFAULT_TOPIC
    auth: Optional[MqttAuthConfig] = None
    tls: Optional[MqttTlsConfig] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MqttConfig":
        _check_keys(
            "mqtt",
            data,
            {"client_id", "host", "port", "qos", "retain", "keepalive", "topic", "auth", "tls"},
        )
        auth_data = _section(data, "auth")
        tls_data = _section(data, "tls")
        auth = MqttAuthConfig.from_dict(auth_data) if auth_data else None
        tls = MqttTlsConfig.from_dict(tls_data) if tls_data else None

        port = data.get("port")
        if port is None:
            port = DEFAULT_MQTT_TLS_PORT if tls else DEFAULT_MQTT_PORT
        else:
            port = _to_port(port, what="MQTT server")
        if tls and port == DEFAULT_MQTT_PORT:
            LOGGER.warning("connecting to non-TLS port of MQTT while TLS settings were configured!")

        try:
            qos = int(data.get("qos", 1))
        except (TypeError, ValueError):
            qos = -1
        if qos not in (0, 1, 2):
            raise ConfigError(f"invalid QoS value: {data.get('qos')!r}. Use 0, 1 or 2 as value!")

        try:
            keepalive = int(data.get("keepalive", 60))
        except (TypeError, ValueError):
            keepalive = 0
        if keepalive < 1:
            raise ConfigError(f"invalid keepalive: {data.get('keepalive')!r}")

        return cls(
            client_id=_to_str(data.get("client_id")) or "gpsstats",
            host=_to_str(data.get("host")) or "localhost",
            port=port,
            qos=qos,
            retain=_to_bool(data.get("retain", False), key="mqtt.retain"),
            keepalive=keepalive,
            topic=_to_str(data.get("topic")) or DEFAULT_TOPIC,
            auth=auth,
            tls=tls,
        )


@dataclass(slots=True)
class BridgeConfig:
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    gpsd: GpsdConfig = field(default_factory=GpsdConfig)
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    source: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, *, source: Path | None = None) -> "BridgeConfig":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError("configuration must be a mapping")
        _check_keys("configuration", data, {"daemon", "gpsd", "mqtt"})
        return cls(
            daemon=DaemonConfig.from_dict(_section(data, "daemon")),
            gpsd=GpsdConfig.from_dict(_section(data, "gpsd")),
            mqtt=MqttConfig.from_dict(_section(data, "mqtt")),
            source=source,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "BridgeConfig":
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
        except OSError as exc:
            raise ConfigError(f"failed to open configuration file: {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse configuration file {path}: {exc}") from exc
        return cls.from_dict(data, source=path)


def load_config(path: str | Path | None = None) -> BridgeConfig:
    """Read the configuration from ``path`` (or the default location)."""

    target = Path(path) if path else Path(os.environ.get("GPSSTATS_CONFIG", str(CONFIG_FILE)))
    return BridgeConfig.from_yaml(target)


def dump_config(config: BridgeConfig) -> None:
    LOGGER.debug("Using configuration:")
    LOGGER.debug(
        "- daemon user/group: %s/%s (ignored)", config.daemon.user, config.daemon.group
    )
    LOGGER.debug("- GPSD server: %s:%s", config.gpsd.host, config.gpsd.port)
    if config.gpsd.device:
        LOGGER.debug("  - device: %s", config.gpsd.device)
    mqtt = config.mqtt
    LOGGER.debug("- MQTT server: %s:%d", mqtt.host, mqtt.port)
    LOGGER.debug("  - client ID: %s", mqtt.client_id)
    LOGGER.debug("  - topic: %s", mqtt.topic)
    LOGGER.debug("  - MQTT QoS: %d", mqtt.qos)
    LOGGER.debug("  - retain messages: %s", "yes" if mqtt.retain else "no")
    if mqtt.auth:
        LOGGER.debug("  - using client credentials")
    if mqtt.tls:
        tls = mqtt.tls
        LOGGER.debug("- using TLS options:")
        LOGGER.debug("  - use TLS version: %s", tls.tls_version)
        if tls.ca_cert_path:
            LOGGER.debug("  - CA cert path: %s", tls.ca_cert_path)
        if tls.ca_cert_file:
            LOGGER.debug("  - CA cert file: %s", tls.ca_cert_file)
        if tls.cert_file:
            LOGGER.debug("  - using client certificate: %s", tls.cert_file)
        LOGGER.debug("  - verify peer: %s", "yes" if tls.verify_peer else "no")
        if tls.ciphers:
            LOGGER.debug("  - cipher suite: %s", tls.ciphers)


__all__ = [
    "BridgeConfig",
    "DaemonConfig",
    "GpsdConfig",
    "MqttAuthConfig",
    "MqttConfig",
    "MqttTlsConfig",
    "dump_config",
    "load_config",
]
