"""Exceptions raised when the exporter is misconfigured."""

from __future__ import annotations


class SpeedtestExporterError(Exception):
    """Base class for all errors surfaced to the caller."""


class NoSpeedtestError(SpeedtestExporterError):
    def __init__(self) -> None:
        super().__init__("No speedtest implementation provided")


class SpeedtestNotFoundError(SpeedtestExporterError):
    def __init__(self, executable: str) -> None:
        super().__init__(f"Could not find speedtest binary {executable!r}")
        self.executable = executable


class ClientAlreadyRunningError(SpeedtestExporterError):
    def __init__(self) -> None:
        super().__init__("Only a single instance of the client can run at a time")


class MissingEndpointError(SpeedtestExporterError):
    def __init__(self) -> None:
        super().__init__("No endpoint for remote write provided")


class MissingRegistryError(SpeedtestExporterError):
    def __init__(self) -> None:
        super().__init__("No prometheus registry provided")


class MissingAuthCredentialsError(SpeedtestExporterError):
    def __init__(self) -> None:
        super().__init__("Need both username and password, at least one of them is empty")


class ConfigError(SpeedtestExporterError):
    pass


class UnknownLogLevelError(ConfigError):
    def __init__(self, level: str) -> None:
        super().__init__(f"Unknown log level {level}")
        self.level = level


class InvalidDurationError(ConfigError):
    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid duration {value!r}")
        self.value = value
