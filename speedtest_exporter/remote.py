"""Periodic push of the metric snapshot to a remote endpoint."""

from __future__ import annotations

import logging
import socket
import threading
from datetime import datetime, timezone
from typing import Optional

import requests
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.exposition import push_to_gateway

from .errors import (
    ClientAlreadyRunningError,
    MissingAuthCredentialsError,
    MissingEndpointError,
    MissingRegistryError,
)

LOGGER = logging.getLogger(__name__)

HTTP_TIMEOUT = 10
DEFAULT_JOB_NAME = "speedtest-exporter"


def get_hostname() -> str:
    hostname = socket.gethostname()
    return hostname or "localhost"


class RemoteWriteClient:
    """Collects the registry on an interval and pushes it to the remote endpoint.

    The snapshot is sent in the Prometheus text format to the grouping key
    ``/metrics/job/<job>/instance/<instance>`` below ``endpoint``. A failed push
    is logged and dropped; the next tick is the only retry.
    """

    def __init__(
        self,
        endpoint: str,
        registry: Optional[CollectorRegistry],
        instance: Optional[str] = None,
        job: str = DEFAULT_JOB_NAME,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        if not endpoint:
            raise MissingEndpointError()
        if registry is None:
            raise MissingRegistryError()
        if bool(username) != bool(password):
            raise MissingAuthCredentialsError()

        self.endpoint = endpoint.rstrip("/")
        self._registry = registry
        self.instance = instance or get_hostname()
        self.job = job or DEFAULT_JOB_NAME
        self.session = requests.Session()
        if username:
            self.session.auth = (username, password)

        self._state_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def collect(self) -> bytes:
        """Snapshot the registry in the text exposition format."""
        return generate_latest(self._registry)

    def _handler(self, url, method, timeout, headers, data):
        """Send the gateway request through the requests session, so auth applies."""

        def handle():
            response = self.session.request(method, url, data=data, headers=dict(headers), timeout=timeout)
            response.raise_for_status()
            LOGGER.debug("Successfully sent %d bytes of metrics to %s", len(data or b""), url)

        return handle

    def push(self) -> None:
        # Grouping key values containing "/" are sent base64 encoded
        push_to_gateway(
            self.endpoint,
            job=self.job,
            registry=self._registry,
            grouping_key={"instance": self.instance},
            timeout=HTTP_TIMEOUT,
            handler=self._handler,
        )

    def _tick(self) -> None:
        try:
            self.push()
        except requests.RequestException as exc:
            LOGGER.error("Failed to send metrics to remote endpoint: %s", exc)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Failed to collect metrics for remote write: %s", exc)

    def run(self, interval: float) -> None:
        """Start pushing every ``interval`` seconds in the background, beginning immediately."""
        with self._state_lock:
            if self._scheduler is not None and self._scheduler.running:
                raise ClientAlreadyRunningError()

            scheduler = BackgroundScheduler(timezone="UTC")
            scheduler.add_job(
                self._tick,
                trigger=IntervalTrigger(seconds=interval),
                id="remote-write",
                next_run_time=datetime.now(timezone.utc),
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            self._scheduler = scheduler
        LOGGER.info("Started remote write client to %s with interval %ss", self.endpoint, interval)

    def is_running(self) -> bool:
        with self._state_lock:
            return self._scheduler is not None and self._scheduler.running

    def stop(self) -> None:
        """Cancel future pushes. A push already in flight is not awaited."""
        with self._state_lock:
            if self._scheduler is None or not self._scheduler.running:
                return
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        LOGGER.info("Stopped remote write client")
