"""Speedtest measurement runners (Ookla CLI + speedtest-cli library)."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import time
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import speedtest

from ..errors import SpeedtestNotFoundError
from .models import MeasurementResult

LOGGER = logging.getLogger(__name__)


class Speedtest(Protocol):
    def run_measurement(self) -> MeasurementResult:
        """Run one speedtest. Failures are returned as a failed result, never raised."""


def bytes_to_megabits(value: Optional[float]) -> float:
    return bytes_to_megabytes(value) * 8


def bytes_to_megabytes(value: Optional[float]) -> float:
    return (value or 0) / 1_000_000


def log_success(result: MeasurementResult) -> None:
    LOGGER.info(
        "Successful speedtest run in %.1fs (down %.2f Mbps / up %.2f Mbps / ping %.2f ms / jitter %.2f ms / %.2f MB used)",
        result.duration_ms / 1000,
        result.download_mbps,
        result.upload_mbps,
        result.ping_ms,
        result.jitter_ms,
        result.data_used_mb,
    )


class SpeedtestCLI:
    """Runs the Ookla speedtest binary and parses its JSON output."""

    def __init__(self, executable: str):
        path = shutil.which(executable)
        if path is None and Path(executable).is_file():
            path = executable
        if path is None:
            raise SpeedtestNotFoundError(executable)
        self.path = path

    def command(self) -> List[str]:
        return [self.path, "--format=json-pretty", "--accept-license", "--accept-gdpr"]

    def run_measurement(self) -> MeasurementResult:
        start = time.monotonic()
        try:
            completed = subprocess.run(self.command(), capture_output=True, text=True, check=False)
        except OSError as exc:
            LOGGER.error("Could not execute speedtest %s: %s", self.path, exc)
            return MeasurementResult.failed()

        if completed.returncode != 0:
            LOGGER.error(
                "Speedtest exited with code %s (stdout: %s, stderr: %s)",
                completed.returncode,
                completed.stdout.strip(),
                completed.stderr.strip(),
            )
            return MeasurementResult.failed()

        try:
            data = json.loads(completed.stdout)
            result = _convert_ookla_payload(data, timedelta(seconds=time.monotonic() - start))
        except (ValueError, TypeError, AttributeError) as exc:
            LOGGER.error("Parsing JSON output from speedtest failed: %s (output: %s)", exc, completed.stdout)
            return MeasurementResult.failed()

        log_success(result)
        return result


def _convert_ookla_payload(data: Dict, duration: timedelta) -> MeasurementResult:
    ping = data.get("ping") or {}
    download = data.get("download") or {}
    upload = data.get("upload") or {}
    server = data.get("server") or {}
    interface = data.get("interface") or {}

    return MeasurementResult.succeeded(
        jitter_ms=ping.get("jitter") or 0.0,
        ping_ms=ping.get("latency") or 0.0,
        download_mbps=bytes_to_megabits(download.get("bandwidth")),
        upload_mbps=bytes_to_megabits(upload.get("bandwidth")),
        data_used_mb=bytes_to_megabytes(download.get("bytes")) + bytes_to_megabytes(upload.get("bytes")),
        server_id=str(server.get("id", "")),
        server_host=server.get("host") or "",
        client_isp=data.get("isp") or "",
        client_ip=interface.get("externalIp") or "",
        duration=duration,
    )


class SpeedtestLibrary:
    """Runs the speedtest in-process through the speedtest-cli package."""

    def __init__(self, secure: bool = True):
        self.secure = secure

    def run_measurement(self) -> MeasurementResult:
        start = time.monotonic()
        try:
            client = speedtest.Speedtest(secure=self.secure)
            client.get_best_server()
            client.download()
            client.upload()
            results = client.results
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Failed to run speedtest: %s", exc)
            return MeasurementResult.failed()

        server = results.server or {}
        client_info = results.client or {}
        result = MeasurementResult.succeeded(
            # speedtest-cli does not measure jitter
            jitter_ms=0.0,
            ping_ms=results.ping or 0.0,
            download_mbps=(results.download or 0) / 1_000_000,
            upload_mbps=(results.upload or 0) / 1_000_000,
            data_used_mb=bytes_to_megabytes(results.bytes_received) + bytes_to_megabytes(results.bytes_sent),
            server_id=str(server.get("id", "")),
            server_host=server.get("host") or "",
            client_isp=client_info.get("isp") or "",
            client_ip=client_info.get("ip") or "",
            duration=timedelta(seconds=time.monotonic() - start),
        )
        log_success(result)
        return result


def create_speedtest(executable: Optional[str]) -> Speedtest:
    """Use the external CLI when a path is configured, the library otherwise."""
    if not executable:
        LOGGER.debug("Using speedtest-cli library implementation")
        return SpeedtestLibrary()
    LOGGER.debug("Using external speedtest binary %s", executable)
    return SpeedtestCLI(executable)
