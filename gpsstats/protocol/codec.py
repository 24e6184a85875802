"""Utilities to serialise data to/from the wire formats."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

from ..errors import ProtocolError
from ..telemetry import CONSTELLATIONS, Snapshot


class GpsdLineCodec:
    """Decode gpsd's newline separated JSON objects."""

    @staticmethod
    def split(buffer: bytes) -> Tuple[List[bytes], bytes]:
        """Split ``buffer`` into complete lines and the unterminated remainder."""

        *lines, rest = buffer.split(b"\n")
        return [line for line in lines if line.strip()], rest

    @staticmethod
    def decode(line: bytes) -> Dict[str, Any]:
        try:
            raw = line.decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"undecodable gpsd line: {exc}") from exc
        if not raw:
            raise ProtocolError("empty line")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"malformed gpsd object: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError("expected JSON object")
        return data

    @staticmethod
    def watch(*, enable: bool, device: str | None = None) -> bytes:
        if not enable:
            return b'?WATCH={"enable":false}\n'
        request: Dict[str, Any] = {"enable": True, "json": True, "pps": True, "timing": True}
        if device:
            request["device"] = device
        return ("?WATCH=" + json.dumps(request, separators=(",", ":")) + "\n").encode("utf-8")


class PayloadEncoder:
    """Encode a :class:`Snapshot` as the single-line JSON object published on the bus.

    Keys always appear in the same order: ``time``, ``sats_used``,
    ``sats_visible``, ``tdop``, ``avg_snr``, ``qErr`` (only when non-zero),
    ``toff``, ``pps`` and finally one ``sats.<constellation>`` entry per
    constellation with used satellites, by ascending constellation id.
    """

    @staticmethod
    def encode(snapshot: Snapshot) -> bytes:
        payload: Dict[str, Any] = {
            "time": float(snapshot.time),
            "sats_used": int(snapshot.sats_used),
            "sats_visible": int(snapshot.sats_visible),
            "tdop": float(snapshot.tdop),
            "avg_snr": float(snapshot.avg_snr),
        }
        if snapshot.qerr:
            payload["qErr"] = int(snapshot.qerr)
        payload["toff"] = float(snapshot.toff)
        payload["pps"] = float(snapshot.pps)
        for gnssid, name in enumerate(CONSTELLATIONS):
            count = snapshot.constellations.get(gnssid, 0)
            if count > 0:
                payload[f"sats.{name}"] = int(count)
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")


__all__ = ["GpsdLineCodec", "PayloadEncoder"]
