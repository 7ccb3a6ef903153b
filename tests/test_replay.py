"""Tests for the recorded-track provider and CSV loading."""

from pathlib import Path

import pytest
from fakes import FakeSearchProvider

from gym_presence.blobstore import InMemoryBlobStore
from gym_presence.csv_io import load_position_samples
from gym_presence.engine import GymPresenceEngine
from gym_presence.geo import offset
from gym_presence.models import (
    AuthorizationState,
    CandidateLocation,
    Coordinate,
    LocationCategory,
    MonitoredRegion,
    PositionSample,
)
from gym_presence.provider import PositionUpdated, RegionEntered, RegionExited
from gym_presence.replay import TrackReplayProvider, boundary_ms

GYM = Coordinate(52.529, 13.416)
OUTSIDE = offset(GYM, 200.0, 0.0)
T0 = 1_700_000_000_000


def _s(t_s: int, coord: Coordinate, acc: float = 10.0) -> PositionSample:
    return PositionSample(coord, acc, T0 + t_s * 1000)


def _gym_track() -> list[PositionSample]:
    """Outside at 0s, inside 60..1860s, outside 1920..2220s."""

    samples = [_s(0, OUTSIDE)]
    samples += [_s(t, GYM) for t in range(60, 1861, 60)]
    samples += [_s(t, OUTSIDE) for t in range(1920, 2221, 60)]
    return samples


class _Recorder:
    def __init__(self, provider: TrackReplayProvider) -> None:
        self.provider = provider
        self.events: list[tuple[object, int]] = []

    def on_event(self, event) -> None:
        self.events.append((event, int(self.provider.now() * 1000)))


def _region_events(rec: _Recorder) -> list[tuple[object, int]]:
    return [(e, at) for e, at in rec.events if isinstance(e, (RegionEntered, RegionExited))]


def test_boundary_ms() -> None:
    assert boundary_ms(0, 60_000, 600, "cur") == 30_000
    assert boundary_ms(0, 700_000, 600, "cur") == 700_000
    assert boundary_ms(0, 700_000, 600, "prev") == 0
    assert boundary_ms(10, 5, 600, "cur") == 10


@pytest.mark.asyncio
async def test_entry_and_exit_times_use_boundary_midpoints() -> None:
    provider = TrackReplayProvider()
    rec = _Recorder(provider)
    provider.set_listener(rec)
    provider.monitor(MonitoredRegion("gym", GYM, 50.0))

    await provider.replay(_gym_track())

    assert _region_events(rec) == [
        (RegionEntered("gym"), T0 + 30_000),
        (RegionExited("gym"), T0 + 1_890_000),
    ]


@pytest.mark.asyncio
async def test_short_excursion_does_not_end_visit() -> None:
    provider = TrackReplayProvider()
    rec = _Recorder(provider)
    provider.set_listener(rec)
    provider.monitor(MonitoredRegion("gym", GYM, 50.0))

    track = [_s(0, GYM), _s(60, OUTSIDE), _s(120, OUTSIDE), _s(180, GYM), _s(240, GYM)]
    await provider.replay(track)

    assert [e for e, _ in _region_events(rec)] == [RegionEntered("gym")]


@pytest.mark.asyncio
async def test_inaccurate_fixes_do_not_cross_boundaries() -> None:
    provider = TrackReplayProvider()
    rec = _Recorder(provider)
    provider.set_listener(rec)
    provider.monitor(MonitoredRegion("gym", GYM, 50.0))

    track = [_s(0, OUTSIDE), _s(60, GYM, acc=500.0), _s(120, OUTSIDE)]
    await provider.replay(track)
    assert _region_events(rec) == []


@pytest.mark.asyncio
async def test_pending_exit_flushed_at_end_of_track() -> None:
    provider = TrackReplayProvider()
    rec = _Recorder(provider)
    provider.set_listener(rec)
    provider.monitor(MonitoredRegion("gym", GYM, 50.0))

    await provider.replay([_s(0, GYM), _s(60, OUTSIDE)])
    assert _region_events(rec)[-1] == (RegionExited("gym"), T0 + 30_000)


@pytest.mark.asyncio
async def test_positions_only_emitted_while_updating() -> None:
    provider = TrackReplayProvider()
    rec = _Recorder(provider)
    provider.set_listener(rec)

    await provider.replay([_s(0, GYM)])
    provider.start_updates()
    await provider.replay([_s(60, GYM)])

    positions = [e for e, _ in rec.events if isinstance(e, PositionUpdated)]
    assert [p.sample.timestamp_ms for p in positions] == [T0 + 60_000]


@pytest.mark.asyncio
async def test_replay_through_engine_records_visit() -> None:
    provider = TrackReplayProvider()
    engine = GymPresenceEngine(
        provider,
        FakeSearchProvider(),
        InMemoryBlobStore(),
        clock=provider.now,
        initial_authorization=AuthorizationState.UNDETERMINED,
    )
    await engine.start()
    try:
        await engine.drain()
        assert engine.acquisition.authorization_state is AuthorizationState.GRANTED
        loc = await engine.save_location(
            CandidateLocation("c", "Gym", GYM, "", 0.0, LocationCategory.FITNESS)
        )

        await provider.replay(_gym_track(), settle=engine.drain)

        [visit] = await engine.visits.list_all()
        assert visit.saved_location_id == loc.id
        assert visit.start_ms == T0 + 30_000
        assert visit.end_ms == T0 + 1_890_000
        assert visit.duration_seconds == 1860.0
        assert engine.current_location == OUTSIDE
    finally:
        await engine.stop()


def test_load_position_samples(tmp_path: Path) -> None:
    p = tmp_path / "Path.csv"
    p.write_text(
        "geoTime,latitude,longitude,horizontalAccuracy,speed\n"
        "2000,52.5,13.4,8.0,0\n"
        "1000,52.6,13.5,,0\n"
        "oops,52.6,13.5,5,0\n",
        encoding="utf-8",
    )
    samples, summary = load_position_samples(p)

    assert [s.timestamp_ms for s in samples] == [1000, 2000]
    assert samples[0].horizontal_accuracy_m == -1.0
    assert samples[1].coordinate == Coordinate(52.5, 13.4)
    assert (summary.rows_total, summary.rows_parsed, summary.rows_skipped) == (3, 2, 1)
    assert "geoTime" in summary.fieldnames


def test_load_position_samples_missing_column(tmp_path: Path) -> None:
    p = tmp_path / "Path.csv"
    p.write_text("time,latitude,longitude\n1000,52.5,13.4\n", encoding="utf-8")
    with pytest.raises(KeyError, match=r"geoTime.*Actual columns: \['time', 'latitude', 'longitude'\]"):
        load_position_samples(p)


def test_load_position_samples_empty_file(tmp_path: Path) -> None:
    p = tmp_path / "Path.csv"
    p.write_text("", encoding="utf-8")
    samples, summary = load_position_samples(p)
    assert samples == []
    assert summary.rows_total == 0
