"""A PositionProvider that replays a recorded track.

Region entry/exit is synthesized the way the platform would report it: each
sample is tested against every monitored circle. Exits are confirmed only after
the track stays outside for ``exit_grace_seconds`` (GPS jitter around the
boundary), and entry/exit times are estimated at the midpoint between the two
samples that straddle the boundary when they are close enough in time.

The provider also acts as the engine clock, so visit timestamps follow the
track rather than wall time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

from gym_presence.geo import is_inside_circle
from gym_presence.models import AuthorizationState, MonitoredRegion, PositionSample
from gym_presence.provider import (
    AuthorizationChanged,
    PositionListener,
    PositionUpdated,
    ProviderEvent,
    RegionEntered,
    RegionExited,
)

logger = logging.getLogger(__name__)

Settle = Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ReplayParams:
    """Parameters controlling synthesized region crossings."""

    # Exit confirmation: require being outside for at least this long before exiting.
    exit_grace_seconds: float = 5 * 60.0
    # For entry/exit boundary midpoint estimation only. Larger gaps fall back to one side.
    transition_gap_seconds: float = 10 * 60.0
    # Samples less accurate than this never move a region's inside/outside state.
    max_crossing_accuracy_m: float = 100.0


def boundary_ms(prev_ms: int, cur_ms: int, max_gap_s: float, prefer: str) -> int:
    """Estimate entry/exit boundary timestamp.

    If two samples are close enough, use midpoint; otherwise fall back to one side.

    Args:
        prev_ms: Previous sample epoch ms.
        cur_ms: Current sample epoch ms.
        max_gap_s: If gap exceeds this, midpoint becomes unreliable.
        prefer: "prev" or "cur".
    """

    if cur_ms < prev_ms:
        return prev_ms
    gap_s = (cur_ms - prev_ms) / 1000.0
    if gap_s <= max_gap_s:
        return prev_ms + (cur_ms - prev_ms) // 2
    return prev_ms if prefer == "prev" else cur_ms


@dataclass(slots=True)
class _RegionState:
    region: MonitoredRegion
    inside: bool | None = None
    last_inside_ms: int | None = None
    last_outside_ms: int | None = None
    outside_started_ms: int | None = None


class TrackReplayProvider:
    """Replays PositionSamples through a PositionListener."""

    def __init__(
        self,
        params: ReplayParams | None = None,
        authorization: AuthorizationState = AuthorizationState.GRANTED,
    ) -> None:
        self._params = params or ReplayParams()
        self._authorization = authorization
        self._listener: PositionListener | None = None
        self._regions: dict[str, _RegionState] = {}
        self._updating = False
        self._now_ms = 0
        self.emitted: list[ProviderEvent] = []

    # ------------------------------------------------------------------ clock

    def now(self) -> float:
        """Engine clock: epoch seconds of the sample being replayed."""

        return self._now_ms / 1000.0

    # ------------------------------------------------------------------ PositionProvider

    def set_listener(self, listener: PositionListener) -> None:
        self._listener = listener

    def request_authorization(self) -> None:
        self._emit(AuthorizationChanged(self._authorization))

    def start_updates(self) -> None:
        self._updating = True

    def stop_updates(self) -> None:
        self._updating = False

    def monitor(self, region: MonitoredRegion) -> None:
        self._regions[region.saved_location_id] = _RegionState(region=region)

    def stop_monitoring(self, region: MonitoredRegion) -> None:
        self._regions.pop(region.saved_location_id, None)

    @property
    def monitored_ids(self) -> list[str]:
        return list(self._regions)

    # ------------------------------------------------------------------ replay

    async def replay(self, samples: Iterable[PositionSample], settle: Settle | None = None) -> int:
        """Feed samples in time order. ``settle`` is awaited after every emitted event.

        Returns:
            Number of samples replayed.
        """

        count = 0
        for sample in samples:
            self._now_ms = sample.timestamp_ms
            if self._updating:
                await self._emit_settled(PositionUpdated(sample), settle)
            await self._check_regions(sample, settle)
            count += 1
        await self._flush_pending_exits(settle)
        return count

    async def _check_regions(self, sample: PositionSample, settle: Settle | None) -> None:
        p = self._params
        acc = sample.horizontal_accuracy_m
        if acc < 0 or acc > p.max_crossing_accuracy_m:
            return
        ts = sample.timestamp_ms
        for rid, st in list(self._regions.items()):
            inside = is_inside_circle(sample.coordinate, st.region.center, st.region.radius_m)
            if inside:
                st.outside_started_ms = None
                if st.inside is not True:
                    if st.inside is False and st.last_outside_ms is not None:
                        at = boundary_ms(st.last_outside_ms, ts, p.transition_gap_seconds, "cur")
                    else:
                        at = ts
                    st.inside = True
                    await self._emit_at(RegionEntered(rid), at, settle)
                st.last_inside_ms = ts
                continue

            st.last_outside_ms = ts
            if st.inside is None:
                st.inside = False
            elif st.inside:
                if st.outside_started_ms is None:
                    st.outside_started_ms = ts
                if (ts - st.outside_started_ms) / 1000.0 >= p.exit_grace_seconds:
                    await self._exit(rid, st, settle)

    async def _flush_pending_exits(self, settle: Settle | None) -> None:
        # end of track while an exit was pending: treat it as confirmed
        for rid, st in list(self._regions.items()):
            if st.inside and st.outside_started_ms is not None:
                await self._exit(rid, st, settle)

    async def _exit(self, rid: str, st: _RegionState, settle: Settle | None) -> None:
        assert st.outside_started_ms is not None
        last_in = st.last_inside_ms if st.last_inside_ms is not None else st.outside_started_ms
        at = boundary_ms(last_in, st.outside_started_ms, self._params.transition_gap_seconds, "prev")
        st.inside = False
        st.outside_started_ms = None
        await self._emit_at(RegionExited(rid), at, settle)

    async def _emit_at(self, event: ProviderEvent, at_ms: int, settle: Settle | None) -> None:
        saved = self._now_ms
        self._now_ms = at_ms
        try:
            await self._emit_settled(event, settle)
        finally:
            self._now_ms = saved

    async def _emit_settled(self, event: ProviderEvent, settle: Settle | None) -> None:
        self._emit(event)
        if settle is not None:
            await settle()

    def _emit(self, event: ProviderEvent) -> None:
        self.emitted.append(event)
        if self._listener is None:
            logger.debug("No listener, %s not delivered", type(event).__name__)
            return
        self._listener.on_event(event)
