"""Single-slot cache for the latest speedtest result, optionally persisted to disk."""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple, Union

from .measurements.models import MeasurementResult

LOGGER = logging.getLogger(__name__)

# Ensures that if the exporter is scraped in intervals, new tests run roughly every cache_time.
MINIMUM_GRACE = timedelta(seconds=30)
ADDITIONAL_GRACE = timedelta(seconds=5)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadWriteLock:
    """Lock allowing many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ResultCache:
    """Holds the most recent speedtest result.

    When ``persist`` is set the entry is written to ``path`` on every save and
    restored from it on startup. Failing to read or write the file is logged,
    never raised: an unreadable file leaves the cache empty, an unopenable path
    disables persistence for the lifetime of the process.
    """

    def __init__(
        self,
        persist: bool,
        path: Union[str, Path, None],
        cache_time: timedelta,
        clock: Clock = _utcnow,
    ) -> None:
        self.persist = persist
        self.path = Path(path) if path else None
        self.cache_time = cache_time
        self._clock = clock
        self._result: Optional[MeasurementResult] = None
        self._lock = ReadWriteLock()

        if self.path is None:
            self.persist = False
        if self.persist:
            self._restore()

    def _restore(self) -> None:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        except OSError as exc:
            LOGGER.info(
                "Failed to open cache file %s, will not persist cache to disk: %s", self.path, exc
            )
            self.persist = False
            return

        try:
            with os.fdopen(fd, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            LOGGER.info("Could not initialize cache from disk %s: %s", self.path, exc)
            return

        if not data.strip():
            LOGGER.info("Cache file %s is empty, starting with empty cache", self.path)
            return

        try:
            self._result = MeasurementResult.from_json(data.decode("utf-8"))
        except ValueError as exc:
            LOGGER.info("Could not decode cache data from %s: %s", self.path, exc)
            return
        LOGGER.info("Initialized cache from disk %s", self.path)

    def read(self) -> Tuple[Optional[MeasurementResult], bool]:
        """Return the cached result and whether it is still valid."""
        with self._lock.read():
            if self._result is None:
                return None, False
            return self._result, self._clock() < self._expires_at(self._result)

    def save(self, result: MeasurementResult) -> None:
        """Replace the cached result, writing it to disk if persistence is enabled."""
        with self._lock.write():
            self._result = result
            if not self.persist:
                return
            try:
                data = result.to_json()
            except (TypeError, ValueError) as exc:
                LOGGER.error("Could not encode result to JSON: %s", exc)
                return
            try:
                self.path.write_text(data, encoding="utf-8")
            except OSError as exc:
                LOGGER.error("Could not write cache to disk %s: %s", self.path, exc)

    def expires_at(self) -> Optional[datetime]:
        """Return when the cached result expires, or None if there is none."""
        with self._lock.read():
            if self._result is None:
                return None
            return self._expires_at(self._result)

    def _expires_at(self, result: MeasurementResult) -> datetime:
        grace = max(MINIMUM_GRACE, result.duration + ADDITIONAL_GRACE)
        return result.timestamp + self.cache_time - grace
