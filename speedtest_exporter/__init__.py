"""Application bootstrap helpers."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from prometheus_client import CollectorRegistry

from .cache import ResultCache
from .collector import SpeedtestCollector
from .config import AppConfig, format_duration, load_config
from .logging_setup import configure_logging
from .measurements.speedtest_runner import create_speedtest
from .remote import RemoteWriteClient
from .web.app import create_web_app

LOGGER = logging.getLogger(__name__)

NAME = "speedtest-exporter"

# Shared by every collector in the process so that speedtests never overlap.
SPEEDTEST_LOCK = threading.Lock()


class ApplicationContext:
    """Holds shared singletons for the service."""

    def __init__(self, config: AppConfig):
        self.config = config
        configure_logging(config)
        self.speedtest = create_speedtest(config.speedtest.cli)
        self.cache = ResultCache(
            config.speedtest.persist,
            config.speedtest.cache_path,
            config.speedtest.cache,
        )
        self.collector = SpeedtestCollector(
            self.cache,
            self.speedtest,
            config.instance,
            lock=SPEEDTEST_LOCK,
        )
        self.registry = CollectorRegistry()
        self.registry.register(self.collector)

        self.remote: Optional[RemoteWriteClient] = None
        if config.remote.enable:
            self.remote = RemoteWriteClient(
                config.remote.url,
                self.registry,
                instance=config.remote.instance,
                job=config.remote.job,
                username=config.remote.username,
                password=config.remote.password,
            )

        self.web_app = create_web_app(config, self.registry)

    def start(self) -> None:
        if self.remote is not None:
            LOGGER.info("Starting remote write client with interval %s", format_duration(self.config.speedtest.cache))
            self.remote.run(self.config.speedtest.cache.total_seconds())

    def shutdown(self) -> None:
        if self.remote is not None:
            self.remote.stop()


def bootstrap(config_path: Optional[str] = None, expand_env: bool = False) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    config = load_config(config_path, expand_env=expand_env)
    return ApplicationContext(config)
