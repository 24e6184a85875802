"""Transport abstractions used by the connection supervisors."""
from __future__ import annotations

from typing import Any, List


class Link:
    """Base class for a connection to one external service (gpsd, MQTT, ...).

    A link owns its socket and protocol handle.  It never reconnects by
    itself; it reports trouble by raising and leaves the decision to the
    :class:`~gpsstats.supervisor.ConnectionSupervisor` driving it:

    * :class:`~gpsstats.errors.ConnectionFailed` from :meth:`open`,
    * :class:`~gpsstats.errors.ConnectionLost` from the I/O methods,
    * :class:`~gpsstats.errors.ProtocolError` for a single bad frame,
    * :class:`~gpsstats.errors.ResourceExhausted` when a handle cannot be
      allocated.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def open(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Gracefully shut the connection down and release the socket."""

        raise NotImplementedError

    def fileno(self) -> int:
        raise NotImplementedError

    def wants_write(self) -> bool:
        return False

    def handle_read(self) -> List[Any]:
        """Consume whatever the socket has to offer and return the decoded events."""

        raise NotImplementedError

    def handle_write(self) -> None:
        return None

    def housekeeping(self) -> None:
        """Periodic protocol bookkeeping (keep-alives, retries, ...)."""

        return None

    def send(self, payload: bytes) -> None:
        raise NotImplementedError(f"{self.name} link does not send events")

    def describe(self) -> str:
        return self.name


__all__ = ["Link"]
