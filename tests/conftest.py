"""Shared fixtures for the speedtest exporter tests."""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from speedtest_exporter.measurements.models import MeasurementResult


def make_result(duration=timedelta(milliseconds=2500)):
    return MeasurementResult.succeeded(
        jitter_ms=0.5,
        ping_ms=15,
        download_mbps=876.53,
        upload_mbps=12.34,
        data_used_mb=950.3079,
        server_id="1234",
        server_host="example.org",
        client_isp="Foo Corp.",
        client_ip="127.0.0.1",
        duration=duration,
    )


class MockSpeedtest:
    """Speedtest stand-in that counts calls and tracks concurrent runs."""

    def __init__(self, result=None, fail=False, callback=None):
        self.result = result
        self.fail = fail
        self.callback = callback
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run_measurement(self):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.callback is not None:
                self.callback()
            if self.fail:
                return MeasurementResult.failed()
            return self.result if self.result is not None else make_result()
        finally:
            with self._lock:
                self.active -= 1


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now += delta


def wait_for(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def mock_speedtest():
    return MockSpeedtest()


@pytest.fixture
def clock():
    return FakeClock()
