"""gpsd client link speaking the JSON watch protocol over TCP."""
from __future__ import annotations

import logging
import socket
from typing import Callable, List, Optional

from .base import Link
from ..config import GpsdConfig
from ..errors import ConnectionFailed, ConnectionLost, ProtocolError, ResourceExhausted
from ..protocol.codec import GpsdLineCodec
from ..protocol.reports import GpsdReport, ReceiverState

LOGGER = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 2.0
RECV_SIZE = 4096
MAX_PENDING_BYTES = 64 * 1024

Connector = Callable[..., socket.socket]


class GpsdLink(Link):
    """Watch a gpsd instance and turn its reports into :class:`GpsdReport` objects."""

    def __init__(
        self,
        config: GpsdConfig,
        *,
        connector: Connector | None = None,
    ) -> None:
        super().__init__("gpsd")
        self.config = config
        self._connector: Connector = connector or socket.create_connection
        self._sock: Optional[socket.socket] = None
        self._buffer = b""
        self._state = ReceiverState()

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        if self._sock is not None:
            return
        address = (self.config.host, self.config.port)
        # blocks the host loop for at most CONNECT_TIMEOUT_S
        try:
            sock = self._connector(address, timeout=CONNECT_TIMEOUT_S)
        except MemoryError as exc:
            raise ResourceExhausted("failed to create GPSD handle: out of memory!") from exc
        except OSError as exc:
            raise ConnectionFailed(f"no gpsd running or network error: {exc}") from exc

        try:
            sock.sendall(GpsdLineCodec.watch(enable=True, device=self.config.device))
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise ConnectionFailed(f"failed to set GPS stream options: {exc}") from exc

        self._sock = sock
        self._buffer = b""
        self._state.reset()
        LOGGER.info("watching gpsd at %s:%s", *address)

    def close(self) -> None:
        sock = self._sock
        self._sock = None
        self._buffer = b""
        if sock is None:
            return
        try:
            sock.send(GpsdLineCodec.watch(enable=False))
        except OSError as exc:
            LOGGER.debug("failed to disable gpsd watch: %s", exc)
        finally:
            sock.close()

    def fileno(self) -> int:
        if self._sock is None:
            raise ConnectionLost("gpsd link is not open")
        return self._sock.fileno()

    def handle_read(self) -> List[GpsdReport]:
        if self._sock is None:
            raise ConnectionLost("gpsd link is not open")
        try:
            chunk = self._sock.recv(RECV_SIZE)
        except (BlockingIOError, InterruptedError):
            return []
        except OSError as exc:
            raise ConnectionLost(f"failed to read from GPSD: {exc}") from exc
        if not chunk:
            raise ConnectionLost("gpsd closed the connection")

        lines, self._buffer = GpsdLineCodec.split(self._buffer + chunk)
        if len(self._buffer) > MAX_PENDING_BYTES:
            LOGGER.warning("dropping %d bytes of unterminated gpsd data", len(self._buffer))
            self._buffer = b""

        reports: List[GpsdReport] = []
        for line in lines:
            try:
                reports.append(self._state.apply(GpsdLineCodec.decode(line)))
            except ProtocolError as exc:
                LOGGER.warning("discarding gpsd frame: %s", exc)
        return reports

    def describe(self) -> str:
        target = f"{self.config.host}:{self.config.port}"
        if self.config.device:
            target += f" ({self.config.device})"
        return f"gpsd {target}"


__all__ = ["GpsdLink"]
