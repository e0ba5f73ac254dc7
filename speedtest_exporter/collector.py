"""Prometheus collector that runs at most one speedtest at a time."""

from __future__ import annotations

import logging
import threading
from typing import Iterator, List, Optional, Tuple

from prometheus_client.core import GaugeMetricFamily, Metric

from .cache import ResultCache
from .errors import NoSpeedtestError
from .measurements.models import MeasurementResult
from .measurements.speedtest_runner import Speedtest

LOGGER = logging.getLogger(__name__)

LABELS = ["ip", "isp", "instance"]

# name, help, result attribute
RESULT_METRICS = [
    ("speedtest_jitter_latency_milliseconds", "Speedtest current Jitter in ms", "jitter_ms"),
    ("speedtest_ping_latency_milliseconds", "Speedtest current Ping in ms", "ping_ms"),
    ("speedtest_download_megabits_per_second", "Speedtest current Download Speed in Mbit/s", "download_mbps"),
    ("speedtest_upload_megabits_per_second", "Speedtest current Upload Speed in Mbit/s", "upload_mbps"),
    ("speedtest_data_used_megabytes", "Data used for speedtest in MB", "data_used_mb"),
]
UP_METRIC = ("speedtest_up", "Indicates if the speedtest was successful")


class SpeedtestCollector:
    """Serves speedtest results to prometheus_client, running a new test only when the cache expired.

    ``lock`` serializes speedtest runs. Two throughput tests on the same link
    corrupt each other's readings, so every collector in a process should be
    handed the same lock.
    """

    def __init__(
        self,
        cache: Optional[ResultCache],
        speedtest: Optional[Speedtest],
        instance: str,
        lock: Optional[threading.Lock] = None,
    ):
        if speedtest is None:
            raise NoSpeedtestError()
        self.cache = cache
        self.speedtest = speedtest
        self.instance = instance
        self.lock = lock if lock is not None else threading.Lock()

    def _read_cache(self) -> Tuple[Optional[MeasurementResult], bool]:
        if self.cache is None:
            return None, False
        return self.cache.read()

    def _save_cache(self, result: MeasurementResult) -> None:
        if self.cache is None:
            return
        self.cache.save(result)

    def get_result(self) -> MeasurementResult:
        """Return the cached result if still valid, otherwise run a new speedtest."""
        result, valid = self._read_cache()
        if valid:
            LOGGER.debug("Cache has not expired, returning cached results")
            return result

        with self.lock:
            # Another thread may have run a speedtest while this one waited
            result, valid = self._read_cache()
            if valid:
                LOGGER.debug("Cache has been renewed, returning cached results")
                return result

            LOGGER.debug("Cache expired, running new speedtest")
            result = self.speedtest.run_measurement()
            self._save_cache(result)
            if self.cache is not None:
                LOGGER.debug("Next speedtest will not be executed before %s", self.cache.expires_at())
            return result

    def describe(self) -> List[Metric]:
        families = [GaugeMetricFamily(name, documentation, labels=LABELS) for name, documentation, _ in RESULT_METRICS]
        families.append(GaugeMetricFamily(*UP_METRIC))
        return families

    def collect(self) -> Iterator[Metric]:
        LOGGER.debug("Starting collection of speedtest metrics")
        result = self.get_result()
        if result.success:
            label_values = [result.client_ip, result.client_isp, self.instance]
            for name, documentation, attribute in RESULT_METRICS:
                family = GaugeMetricFamily(name, documentation, labels=LABELS)
                family.add_metric(label_values, getattr(result, attribute))
                yield family
        yield GaugeMetricFamily(*UP_METRIC, value=1.0 if result.success else 0.0)
        LOGGER.debug("Finished collection of speedtest metrics")
