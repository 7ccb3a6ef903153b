"""Geofence region monitoring and the visit session state machine.

Visit lifecycle (one open session at a time, across all locations)::

    idle --entered(L)--> open(L) --exited(L)--> idle
    open(L) --entered(any)--> open(L)        duplicate entry, ignored
    open(L) --exited(M != L)--> open(L)      ignored
    open(L) --stop_monitoring(L)--> idle     closed at stop time
"""

from __future__ import annotations

import logging
from dataclasses import replace

from gym_presence.config import EngineConfig
from gym_presence.errors import CapacityExceeded, ErrorSink, MonitoringFailure
from gym_presence.events import VISIT_ENDED, VISIT_STARTED, EventNotifier
from gym_presence.models import MonitoredRegion, SavedLocation, VisitSession
from gym_presence.provider import PositionProvider
from gym_presence.timeutils import Clock, now_ms, system_clock

logger = logging.getLogger(__name__)


class GeofenceVisitTracker:
    """Keeps the monitored-region set within the provider cap and tracks visits.

    All methods must be called from the engine's owner loop.
    """

    def __init__(
        self,
        provider: PositionProvider,
        notifier: EventNotifier,
        errors: ErrorSink,
        config: EngineConfig | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._provider = provider
        self._notifier = notifier
        self._errors = errors
        self._config = config or EngineConfig()
        self._clock = clock
        # insertion-ordered: saved_location_id -> (location, region)
        self._tracked: dict[str, tuple[SavedLocation, MonitoredRegion]] = {}
        self._current: VisitSession | None = None

    @property
    def current_visit(self) -> VisitSession | None:
        return self._current

    @property
    def monitored_locations(self) -> list[SavedLocation]:
        return [loc for loc, _ in self._tracked.values()]

    @property
    def region_count(self) -> int:
        return len(self._tracked)

    def is_monitoring(self, loc: SavedLocation) -> bool:
        return loc.id in self._tracked

    def start_monitoring(self, loc: SavedLocation) -> None:
        """Register a geofence for ``loc``. Already-monitored locations are a no-op.

        Raises:
            CapacityExceeded: The region cap is reached; nothing is changed.
        """

        if loc.id in self._tracked:
            return
        if len(self._tracked) >= self._config.region_cap:
            raise CapacityExceeded(
                f"Cannot monitor {loc.name!r}: {self._config.region_cap} regions already active"
            )
        region = MonitoredRegion.for_location(loc)
        self._provider.monitor(region)
        self._tracked[loc.id] = (loc, region)
        logger.info(
            "Monitoring %s (r=%.0fm), %d/%d regions",
            loc.name,
            region.radius_m,
            len(self._tracked),
            self._config.region_cap,
        )

    def stop_monitoring(self, loc: SavedLocation) -> VisitSession | None:
        """Forget ``loc``. A visit open at ``loc`` is closed now and returned."""

        if not self._unregister(loc):
            return None
        if self._current is not None and self._current.saved_location_id == loc.id:
            return self._close_visit()
        return None

    def stop_all(self) -> VisitSession | None:
        closed = None
        for loc in self.monitored_locations:
            closed = self.stop_monitoring(loc) or closed
        return closed

    def restart_monitoring(self) -> None:
        """Stop and re-start every tracked region to resync stale provider state.

        An open visit survives the resync.
        """

        for loc in self.monitored_locations:
            self._unregister(loc)
            self.start_monitoring(loc)

    def _unregister(self, loc: SavedLocation) -> bool:
        entry = self._tracked.pop(loc.id, None)
        if entry is None:
            return False
        self._provider.stop_monitoring(entry[1])
        logger.info("Stopped monitoring %s", loc.name)
        return True

    def update_location(self, loc: SavedLocation) -> None:
        """Refresh the cached record of a tracked location (e.g. after a visit append)."""

        entry = self._tracked.get(loc.id)
        if entry is not None:
            self._tracked[loc.id] = (loc, entry[1])

    def resume_visit(self, session: VisitSession) -> bool:
        """Re-adopt a persisted open visit after a restart. Returns True if adopted."""

        if not session.is_active or self._current is not None or session.saved_location_id not in self._tracked:
            return False
        self._current = session
        logger.info("Resumed open visit %s", session.id)
        return True

    def handle_region_entered(self, region_id: str) -> VisitSession | None:
        """Open a visit unless one is already open. Returns the new session, if any."""

        entry = self._tracked.get(region_id)
        if entry is None:
            logger.debug("Entry for untracked region %s ignored", region_id)
            return None
        if self._current is not None:
            logger.debug("Duplicate entry for %s ignored, visit %s still open", region_id, self._current.id)
            return None
        self._current = VisitSession(saved_location_id=region_id, start_ms=now_ms(self._clock))
        logger.info("Visit started at %s", entry[0].name)
        self._notifier.publish(VISIT_STARTED, self._current)
        return self._current

    def handle_region_exited(self, region_id: str) -> VisitSession | None:
        """Close the open visit if it belongs to ``region_id``. Returns the closed session."""

        if self._current is None or self._current.saved_location_id != region_id:
            logger.debug("Exit for %s without a matching open visit ignored", region_id)
            return None
        return self._close_visit()

    def _close_visit(self) -> VisitSession:
        assert self._current is not None
        closed = replace(self._current, end_ms=now_ms(self._clock))
        self._current = None
        logger.info("Visit ended at %s after %.0fs", closed.saved_location_id, closed.duration_seconds or 0.0)
        self._notifier.publish(VISIT_ENDED, closed)
        return closed

    def handle_monitoring_failed(self, region_id: str, reason: str) -> None:
        # tracking intent is kept; restart_monitoring() may succeed later
        entry = self._tracked.get(region_id)
        name = entry[0].name if entry else region_id
        self._errors.report(MonitoringFailure(f"Failed to monitor region {name!r}: {reason}"))
