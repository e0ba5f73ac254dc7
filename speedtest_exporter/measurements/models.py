"""Shared dataclasses for measurements."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    # Millisecond resolution keeps persisted records equal after a round-trip.
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def datetime_to_millis(value: datetime) -> int:
    return (value - EPOCH) // timedelta(milliseconds=1)


def millis_to_datetime(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def _typed(data: Dict[str, Any], key: str, expected: type, default: Any) -> Any:
    value = data.get(key, default)
    if not isinstance(value, expected):
        raise ValueError(f"Field {key!r} must be {expected.__name__}, got {value!r}")
    return value


def _integer(data: Dict[str, Any], key: str) -> int:
    # bool is an int subclass, reject it explicitly
    value = data.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Field {key!r} must be an integer, got {value!r}")
    return value


def _number(data: Dict[str, Any], key: str) -> float:
    value = data.get(key, 0.0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Field {key!r} must be a number, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class MeasurementResult:
    success: bool
    timestamp: datetime
    duration_ms: int = 0
    jitter_ms: float = 0.0
    ping_ms: float = 0.0
    download_mbps: float = 0.0
    upload_mbps: float = 0.0
    data_used_mb: float = 0.0
    server_id: str = ""
    server_host: str = ""
    client_isp: str = ""
    client_ip: str = ""

    @classmethod
    def failed(cls) -> "MeasurementResult":
        """Result recorded when a speedtest could not complete."""
        return cls(success=False, timestamp=utcnow())

    @classmethod
    def succeeded(
        cls,
        jitter_ms: float,
        ping_ms: float,
        download_mbps: float,
        upload_mbps: float,
        data_used_mb: float,
        server_id: str,
        server_host: str,
        client_isp: str,
        client_ip: str,
        duration: timedelta,
    ) -> "MeasurementResult":
        return cls(
            success=True,
            timestamp=utcnow(),
            duration_ms=duration // timedelta(milliseconds=1),
            jitter_ms=float(jitter_ms),
            ping_ms=float(ping_ms),
            download_mbps=float(download_mbps),
            upload_mbps=float(upload_mbps),
            data_used_mb=float(data_used_mb),
            server_id=str(server_id),
            server_host=server_host,
            client_isp=client_isp,
            client_ip=client_ip,
        )

    @property
    def duration(self) -> timedelta:
        return timedelta(milliseconds=self.duration_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jitter_latency_ms": self.jitter_ms,
            "ping_ms": self.ping_ms,
            "download_mbps": self.download_mbps,
            "upload_mbps": self.upload_mbps,
            "data_used_mb": self.data_used_mb,
            "server_id": self.server_id,
            "server_host": self.server_host,
            "client_isp": self.client_isp,
            "client_ip": self.client_ip,
            "success": self.success,
            "timestamp": datetime_to_millis(self.timestamp),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeasurementResult":
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        try:
            return cls(
                success=_typed(data, "success", bool, False),
                timestamp=millis_to_datetime(_integer(data, "timestamp")),
                duration_ms=_integer(data, "duration_ms"),
                jitter_ms=_number(data, "jitter_latency_ms"),
                ping_ms=_number(data, "ping_ms"),
                download_mbps=_number(data, "download_mbps"),
                upload_mbps=_number(data, "upload_mbps"),
                data_used_mb=_number(data, "data_used_mb"),
                server_id=_typed(data, "server_id", str, ""),
                server_host=_typed(data, "server_host", str, ""),
                client_isp=_typed(data, "client_isp", str, ""),
                client_ip=_typed(data, "client_ip", str, ""),
            )
        except OverflowError as exc:
            raise ValueError(f"Invalid measurement record: {exc}") from exc

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, raw: str) -> "MeasurementResult":
        # json.JSONDecodeError is a ValueError subclass
        return cls.from_dict(json.loads(raw))
