"""Configuration loading helpers for the speedtest exporter."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

import yaml

from .errors import (
    ConfigError,
    InvalidDurationError,
    MissingAuthCredentialsError,
    MissingEndpointError,
    UnknownLogLevelError,
)
from .remote import DEFAULT_JOB_NAME, get_hostname

LOGGER = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")

SECTIONS = {"logging", "web", "speedtest", "remote"}


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """Parse durations such as ``90s``, ``5m`` or ``1h5m21s``. Bare numbers are seconds."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise InvalidDurationError(str(value))
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    if not text:
        raise InvalidDurationError(text)
    if text == "0":
        return timedelta(0)

    total = timedelta(0)
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise InvalidDurationError(text)
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise InvalidDurationError(text)
    return total


def format_duration(value: timedelta) -> str:
    """Inverse of parse_duration, e.g. ``1h5m21s``."""
    millis = value // timedelta(milliseconds=1)
    if millis == 0:
        return "0s"
    hours, rest = divmod(millis, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds:
        parts.append(f"{seconds}s")
    if millis:
        parts.append(f"{millis}ms")
    return "".join(parts)


@dataclass
class LoggingConfig:
    level: str = "info"
    file: Optional[str] = None


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    reverse_proxy_headers: bool = False


@dataclass
class SpeedtestConfig:
    # Path or name of the Ookla CLI; the speedtest-cli library is used when unset
    cli: Optional[str] = None
    cache: timedelta = timedelta(minutes=5)
    persist: bool = True
    cache_path: str = "/cache/speedtest-result.json"
    instance: Optional[str] = None


@dataclass
class RemoteConfig:
    enable: bool = False
    url: str = ""
    instance: Optional[str] = None
    job: str = DEFAULT_JOB_NAME
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass
class AppConfig:
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    web: WebConfig = field(default_factory=WebConfig)
    speedtest: SpeedtestConfig = field(default_factory=SpeedtestConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)

    @property
    def log_level(self) -> int:
        return LOG_LEVELS[str(self.logging.level).lower()]

    @property
    def instance(self) -> str:
        return self.speedtest.instance or self.remote.instance or get_hostname()


def _section(cls, data: dict, name: str):
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section {name!r} must be a mapping")
    try:
        return cls(**section)
    except TypeError as exc:
        raise ConfigError(f"Invalid {name!r} section: {exc}") from exc


def validate_config(config: AppConfig) -> AppConfig:
    if str(config.logging.level).lower() not in LOG_LEVELS:
        raise UnknownLogLevelError(config.logging.level)

    config.speedtest.cache = parse_duration(config.speedtest.cache)

    remote = config.remote
    if remote.enable:
        if not remote.url:
            raise MissingEndpointError()
        if bool(remote.username) != bool(remote.password):
            raise MissingAuthCredentialsError()
        if not remote.instance:
            LOGGER.info("No instance name provided, defaulting to hostname")
            remote.instance = get_hostname()
    return config


def load_config(path: Optional[str] = None, expand_env: bool = False) -> AppConfig:
    """Load application configuration from YAML file.

    Without a path the defaults are returned. With ``expand_env`` set,
    ``$VAR`` and ``${VAR}`` references are expanded before parsing.
    """

    if not path:
        return validate_config(AppConfig())

    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Missing configuration file at {source_path}")

    raw = source_path.read_text(encoding="utf-8")
    if expand_env:
        raw = os.path.expandvars(raw)

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {source_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {source_path} must be a mapping")
    unknown = set(data) - SECTIONS
    if unknown:
        raise ConfigError(f"Unknown configuration sections: {', '.join(sorted(map(str, unknown)))}")

    config = AppConfig(
        logging=_section(LoggingConfig, data, "logging"),
        web=_section(WebConfig, data, "web"),
        speedtest=_section(SpeedtestConfig, data, "speedtest"),
        remote=_section(RemoteConfig, data, "remote"),
    )
    return validate_config(config)
