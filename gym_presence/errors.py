"""Error taxonomy and the injected error sink for ambient failures.

Errors caused by an explicit caller request (search, save, start monitoring) are
raised to that caller. Ambient conditions (permission changes, monitoring failures,
background persistence) are reported to an ``ErrorSink`` instead.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)


class GymPresenceError(Exception):
    """Base class for every engine condition."""

    message = "Unexpected location engine error."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail or self.message


class LocationUnavailable(GymPresenceError):
    message = "Location not available. Please enable location services."


class SearchFailed(GymPresenceError):
    message = "Failed to search for nearby gyms."


class PermissionDenied(GymPresenceError):
    message = "Location access is required. Please enable location services in Settings."


class CapacityExceeded(GymPresenceError):
    message = "Maximum number of monitored regions reached."


class DuplicateLocation(GymPresenceError):
    message = "A gym already exists at this location."


class PersistenceFailure(GymPresenceError):
    message = "Failed to read or write saved records."


class MonitoringFailure(GymPresenceError):
    message = "Failed to monitor region."


ErrorListener = Callable[[GymPresenceError], None]


class ErrorSink:
    """Collects ambient errors for asynchronous surfacing (banner, alert, log).

    Constructed once by the composition root and passed to every component that
    produces ambient conditions.
    """

    def __init__(self, history_size: int = 50) -> None:
        self._recent: deque[GymPresenceError] = deque(maxlen=history_size)
        self._listeners: list[ErrorListener] = []

    def add_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""

        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def report(self, error: GymPresenceError) -> None:
        logger.warning("%s: %s", type(error).__name__, error.detail)
        self._recent.append(error)
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Error listener %r failed", listener)

    @property
    def recent(self) -> list[GymPresenceError]:
        return list(self._recent)

    @property
    def latest(self) -> GymPresenceError | None:
        return self._recent[-1] if self._recent else None

    def clear(self) -> None:
        self._recent.clear()
