"""End-to-end tests of the engine with fake providers."""

import asyncio
import threading

import pytest
import pytest_asyncio
from fakes import BrokenBlobStore, FakeClock, FakePositionProvider, FakeSearchProvider

from gym_presence.blobstore import InMemoryBlobStore
from gym_presence.config import EngineConfig
from gym_presence.engine import GymPresenceEngine
from gym_presence.errors import CapacityExceeded, LocationUnavailable, PermissionDenied, PersistenceFailure
from gym_presence.events import LOCATION_CHANGED, VISIT_ENDED, VISIT_STARTED
from gym_presence.geo import offset
from gym_presence.models import (
    AuthorizationState,
    CandidateLocation,
    Coordinate,
    LocationCategory,
    PositionSample,
    SavedLocation,
    VisitSession,
)
from gym_presence.provider import AuthorizationChanged, PositionUpdated, RegionEntered, RegionExited
from gym_presence.search import SearchHit

HOME = Coordinate(52.52, 13.405)


def _candidate(name: str, coord: Coordinate) -> CandidateLocation:
    return CandidateLocation(
        id="c-" + name,
        name=name,
        coordinate=coord,
        address="",
        distance_m=0.0,
        category=LocationCategory.FITNESS,
    )


def _fix(coord: Coordinate, acc: float = 10.0) -> PositionUpdated:
    return PositionUpdated(PositionSample(coord, acc, 0))


class Harness:
    def __init__(self, blobs=None, config: EngineConfig | None = None, search=None) -> None:
        self.provider = FakePositionProvider()
        self.search = search or FakeSearchProvider()
        self.blobs = blobs if blobs is not None else InMemoryBlobStore()
        self.clock = FakeClock()
        self.engine = GymPresenceEngine(
            self.provider,
            self.search,
            self.blobs,
            config=config,
            clock=self.clock,
            initial_authorization=AuthorizationState.GRANTED,
        )


@pytest_asyncio.fixture
async def h():
    harness = Harness()
    await harness.engine.start()
    yield harness
    await harness.engine.stop()


@pytest.mark.asyncio
async def test_start_begins_acquisition(h: Harness) -> None:
    assert h.provider.listener is h.engine
    assert h.provider.calls == ["start_updates"]
    assert h.engine.running


@pytest.mark.asyncio
async def test_cross_thread_events_update_location(h: Harness) -> None:
    seen: list[Coordinate] = []
    h.engine.notifier.subscribe(LOCATION_CHANGED, seen.append)

    t = threading.Thread(target=h.provider.emit, args=(_fix(HOME),))
    t.start()
    t.join()
    await asyncio.sleep(0.01)
    await h.engine.drain()

    assert h.engine.current_location == HOME
    assert seen == [HOME]


@pytest.mark.asyncio
async def test_events_applied_in_arrival_order(h: Harness) -> None:
    later = offset(HOME, 100.0, 0.0)
    h.provider.emit(_fix(HOME))
    h.provider.emit(_fix(later, acc=500.0))
    h.provider.emit(_fix(later))
    await h.engine.drain()
    assert h.engine.current_location == later
    assert h.engine.acquisition.rejected_samples == 1


@pytest.mark.asyncio
async def test_visit_lifecycle_is_persisted(h: Harness) -> None:
    loc = await h.engine.save_location(_candidate("Gym", HOME))
    assert f"monitor:{loc.id}" in h.provider.calls

    ended: list[VisitSession] = []
    h.engine.notifier.subscribe(VISIT_ENDED, ended.append)

    h.provider.emit(RegionEntered(loc.id))
    await h.engine.drain()
    [open_visit] = await h.engine.visits.list_all()
    assert open_visit.is_active
    assert h.engine.current_visit == open_visit
    assert (await h.engine.saved.get(loc.id)).visit_history == (open_visit.start_ms,)

    h.clock.advance(1800)
    h.provider.emit(RegionExited(loc.id))
    await h.engine.drain()
    [closed] = await h.engine.visits.list_all()
    assert closed.id == open_visit.id
    assert closed.duration_seconds == 1800.0
    assert ended == [closed]
    assert h.engine.current_visit is None


@pytest.mark.asyncio
async def test_delete_location_stops_monitoring(h: Harness) -> None:
    loc = await h.engine.save_location(_candidate("Gym", HOME))
    assert await h.engine.delete_location(loc.id)
    assert loc.id not in h.provider.monitored
    assert await h.engine.saved.list_all() == []
    assert not await h.engine.delete_location(loc.id)


@pytest.mark.asyncio
async def test_save_over_region_cap_reports_but_keeps_location() -> None:
    harness = Harness(config=EngineConfig(region_cap=2))
    engine = harness.engine
    await engine.start(acquire=False)
    try:
        for i in range(3):
            await engine.save_location(_candidate(f"G{i}", offset(HOME, 1000.0 * i, 0.0)))
        assert len(await engine.saved.list_all()) == 3
        assert engine.tracker.region_count == 2
        assert isinstance(engine.errors.latest, CapacityExceeded)
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_search_needs_location(h: Harness) -> None:
    with pytest.raises(LocationUnavailable):
        await h.engine.search("yoga")


@pytest.mark.asyncio
async def test_search_uses_current_location() -> None:
    hits = [SearchHit(f"Yoga {i}", offset(HOME, 100.0 * (i + 1), 0.0)) for i in range(6)]
    harness = Harness(search=FakeSearchProvider(lambda q, c, r: hits if c == HOME else []))
    engine = harness.engine
    await engine.start()
    try:
        harness.provider.emit(_fix(HOME))
        await engine.drain()
        results = await engine.search("yoga")
        assert [r.name for r in results] == [f"Yoga {i}" for i in range(6)]
        assert all(r.category is LocationCategory.YOGA for r in results)
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_queue_overflow_drops_events() -> None:
    harness = Harness(config=EngineConfig(event_queue_size=1))
    engine = harness.engine
    await engine.start(acquire=False)
    try:
        for _ in range(3):
            harness.provider.emit(_fix(HOME))
        assert engine.dropped_events == 2
        await engine.drain()
        assert engine.current_location == HOME
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_open_visit_resumed_after_restart() -> None:
    blobs = InMemoryBlobStore()
    first = Harness(blobs=blobs)
    await first.engine.start()
    loc = await first.engine.save_location(_candidate("Gym", HOME))
    first.provider.emit(RegionEntered(loc.id))
    await first.engine.drain()
    await first.engine.stop()

    second = Harness(blobs=blobs)
    await second.engine.start()
    try:
        assert f"monitor:{loc.id}" in second.provider.calls
        assert second.engine.current_visit is not None
        assert second.engine.current_visit.saved_location_id == loc.id

        second.provider.emit(RegionExited(loc.id))
        await second.engine.drain()
        [closed] = await second.engine.visits.list_all()
        assert not closed.is_active
    finally:
        await second.engine.stop()


@pytest.mark.asyncio
async def test_resume_picks_up_unmonitored_locations() -> None:
    harness = Harness(config=EngineConfig(region_cap=1))
    engine = harness.engine
    await engine.start(acquire=False)
    try:
        a = await engine.save_location(_candidate("A", HOME))
        b = await engine.save_location(_candidate("B", offset(HOME, 1000.0, 0.0)))
        assert not engine.tracker.is_monitoring(b)
        await engine.delete_location(a.id)
        await engine.resume()
        assert engine.tracker.is_monitoring(b)
        assert engine.tracker.region_count == 1
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_visit_persistence_failure_goes_to_sink() -> None:
    harness = Harness(blobs=BrokenBlobStore())
    engine = harness.engine
    await engine.start(acquire=False)
    try:
        loc_id = "gym1"
        engine.tracker.start_monitoring(
            SavedLocation(loc_id, "Gym", LocationCategory.FITNESS, HOME, "", 50.0)
        )
        started: list[VisitSession] = []
        engine.notifier.subscribe(VISIT_STARTED, started.append)
        harness.provider.emit(RegionEntered(loc_id))
        await engine.drain()
        assert len(started) == 1
        assert isinstance(engine.errors.latest, PersistenceFailure)
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_denied_authorization_event(h: Harness) -> None:
    h.provider.emit(AuthorizationChanged(AuthorizationState.DENIED))
    await h.engine.drain()
    assert isinstance(h.engine.errors.latest, PermissionDenied)
    assert "stop_updates" in h.provider.calls


@pytest.mark.asyncio
async def test_deleting_location_with_open_visit_frees_the_slot(h: Harness) -> None:
    a = await h.engine.save_location(_candidate("A", HOME))
    b = await h.engine.save_location(_candidate("B", offset(HOME, 1000.0, 0.0)))
    ended: list[VisitSession] = []
    h.engine.notifier.subscribe(VISIT_ENDED, ended.append)

    h.provider.emit(RegionEntered(a.id))
    await h.engine.drain()
    h.clock.advance(600)
    assert await h.engine.delete_location(a.id)

    [closed_a] = await h.engine.visits.list_all()
    assert closed_a.saved_location_id == a.id
    assert closed_a.duration_seconds == 600.0
    assert ended == [closed_a]
    assert h.engine.current_visit is None

    h.clock.advance(3600)
    h.provider.emit(RegionEntered(b.id))
    await h.engine.drain()
    assert h.engine.current_visit is not None
    assert h.engine.current_visit.saved_location_id == b.id
    assert [v.saved_location_id for v in await h.engine.visits.list_all()] == [a.id, b.id]


@pytest.mark.asyncio
async def test_resume_keeps_open_visit(h: Harness) -> None:
    loc = await h.engine.save_location(_candidate("Gym", HOME))
    h.provider.emit(RegionEntered(loc.id))
    await h.engine.drain()
    visit = h.engine.current_visit

    await h.engine.resume()
    assert h.engine.current_visit == visit
    assert h.provider.count(f"monitor:{loc.id}") == 2
