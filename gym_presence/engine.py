"""Composition root and the single-owner event loop.

Provider callbacks may arrive on any thread. They only enqueue an event object
(``GymPresenceEngine.on_event``); one consumer task on the owner loop applies
events in arrival order to the acquisition controller and the geofence tracker,
then persists any visit transition.
"""

from __future__ import annotations

import asyncio
import logging

from gym_presence.acquisition import LocationAcquisitionController
from gym_presence.blobstore import PersistentRecordStore
from gym_presence.cache import SearchCache
from gym_presence.config import EngineConfig
from gym_presence.errors import CapacityExceeded, ErrorSink, PersistenceFailure
from gym_presence.events import EventNotifier
from gym_presence.geofence import GeofenceVisitTracker
from gym_presence.models import AuthorizationState, CandidateLocation, Coordinate, SavedLocation, VisitSession
from gym_presence.provider import (
    AuthorizationChanged,
    MonitoringFailed,
    PositionProvider,
    PositionUpdated,
    ProviderEvent,
    RegionEntered,
    RegionExited,
    UpdateFailed,
)
from gym_presence.saved import SavedLocationStore, VisitHistoryStore
from gym_presence.search import ProximitySearchEngine, ProximitySearchProvider
from gym_presence.timeutils import Clock, system_clock

logger = logging.getLogger(__name__)


class GymPresenceEngine:
    """Wires every component together and owns their mutable state."""

    def __init__(
        self,
        position_provider: PositionProvider,
        search_provider: ProximitySearchProvider,
        blobs: PersistentRecordStore,
        *,
        config: EngineConfig | None = None,
        notifier: EventNotifier | None = None,
        errors: ErrorSink | None = None,
        clock: Clock = system_clock,
        initial_authorization: AuthorizationState = AuthorizationState.UNDETERMINED,
    ) -> None:
        self.config = config or EngineConfig()
        self.notifier = notifier or EventNotifier()
        self.errors = errors or ErrorSink()
        self._position = position_provider

        self.cache: SearchCache[CandidateLocation] = SearchCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
            clock=clock,
        )
        self.acquisition = LocationAcquisitionController(
            position_provider, self.notifier, self.errors, self.config, initial_state=initial_authorization
        )
        self.tracker = GeofenceVisitTracker(position_provider, self.notifier, self.errors, self.config, clock=clock)
        self.search_engine = ProximitySearchEngine(search_provider, self.cache, self.config)
        self.saved = SavedLocationStore(blobs, self.notifier, self.errors, self.config)
        self.visits = VisitHistoryStore(blobs, self.errors, self.config)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[ProviderEvent] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self.dropped_events = 0

    # ------------------------------------------------------------------ lifecycle

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self, *, acquire: bool = True) -> None:
        """Start the event loop, register persisted geofences and begin acquisition."""

        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.config.event_queue_size)
        self._position.set_listener(self)
        self._consumer = asyncio.create_task(self._run(), name="gym-presence-events")

        await self._monitor_saved_locations()
        for session in reversed(await self.visits.list_all()):
            if session.is_active:
                self.tracker.resume_visit(session)
                break
        if acquire:
            self.acquisition.start_acquisition()
        logger.info("Engine started, %d region(s) monitored", self.tracker.region_count)

    async def stop(self) -> None:
        self.acquisition.stop_acquisition()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None
        logger.info("Engine stopped")

    async def drain(self) -> None:
        """Wait until every event enqueued so far has been processed."""

        if self._queue is not None:
            await self._queue.join()

    async def resume(self) -> None:
        """App-resume resync: restart known regions and pick up any untracked saved ones."""

        self.tracker.restart_monitoring()
        await self._monitor_saved_locations()

    # ------------------------------------------------------------------ ingestion

    def on_event(self, event: ProviderEvent) -> None:
        """PositionListener entry point. Safe to call from any thread."""

        loop = self._loop
        if loop is None or loop.is_closed() or self._queue is None:
            logger.warning("Engine not started, dropping %s", type(event).__name__)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._enqueue(event)
        else:
            loop.call_soon_threadsafe(self._enqueue, event)

    post = on_event

    def _enqueue(self, event: ProviderEvent) -> None:
        assert self._queue is not None
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_events += 1
            logger.warning("Event queue full (%d), dropped %s", self._queue.maxsize, type(event).__name__)

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            except Exception:
                logger.exception("Failed to handle %r", event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: ProviderEvent) -> None:
        if isinstance(event, PositionUpdated):
            self.acquisition.handle_position_updated(event.sample)
        elif isinstance(event, AuthorizationChanged):
            self.acquisition.handle_authorization_changed(event.state)
        elif isinstance(event, UpdateFailed):
            self.acquisition.handle_update_failed(event.reason)
        elif isinstance(event, RegionEntered):
            started = self.tracker.handle_region_entered(event.region_id)
            if started is not None:
                await self._record_visit_started(started)
        elif isinstance(event, RegionExited):
            ended = self.tracker.handle_region_exited(event.region_id)
            if ended is not None:
                await self._record_visit_ended(ended)
        elif isinstance(event, MonitoringFailed):
            self.tracker.handle_monitoring_failed(event.region_id, event.reason)
        else:
            logger.warning("Unknown provider event %r", event)

    async def _record_visit_started(self, session: VisitSession) -> None:
        try:
            await self.visits.append(session)
            loc = await self.saved.record_visit_append(session.saved_location_id, session.start_ms)
        except PersistenceFailure as exc:
            self.errors.report(exc)
            return
        if loc is not None:
            self.tracker.update_location(loc)

    async def _record_visit_ended(self, session: VisitSession) -> None:
        try:
            if not await self.visits.update(session):
                await self.visits.append(session)
        except PersistenceFailure as exc:
            self.errors.report(exc)

    # ------------------------------------------------------------------ public API

    @property
    def current_location(self) -> Coordinate | None:
        return self.acquisition.current_location

    @property
    def current_visit(self) -> VisitSession | None:
        return self.tracker.current_visit

    async def search(self, text: str = "", page: int = 1) -> list[CandidateLocation]:
        return await self.search_engine.search(self.acquisition.current_location, text, page)

    async def save_location(self, candidate: CandidateLocation, *, radius_m: float | None = None) -> SavedLocation:
        """Persist a candidate and start monitoring it.

        A full region set does not undo the save; CapacityExceeded is reported to
        the error sink and the location is picked up by a later ``resume()``.
        """

        loc = await self.saved.save(candidate, radius_m=radius_m)
        try:
            self.tracker.start_monitoring(loc)
        except CapacityExceeded as exc:
            self.errors.report(exc)
        return loc

    async def delete_location(self, location_id: str) -> bool:
        loc = await self.saved.get(location_id)
        if loc is not None:
            closed = self.tracker.stop_monitoring(loc)
            if closed is not None:
                await self._record_visit_ended(closed)
        return await self.saved.delete(location_id)

    async def _monitor_saved_locations(self) -> None:
        for loc in await self.saved.list_all():
            if self.tracker.is_monitoring(loc):
                continue
            try:
                self.tracker.start_monitoring(loc)
            except CapacityExceeded as exc:
                self.errors.report(exc)
                break
