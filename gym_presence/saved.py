"""Saved locations and visit history, persisted through a blob store.

Every read-modify-write runs under one ``asyncio.Lock`` per collection so that
concurrent callers on the owner loop cannot lose each other's updates. Blob I/O
runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Generic, TypeVar

from gym_presence.blobstore import PersistentRecordStore
from gym_presence.codec import CodecError, decode_records, encode_records
from gym_presence.config import EngineConfig
from gym_presence.errors import DuplicateLocation, ErrorSink, PersistenceFailure
from gym_presence.events import SAVED_LOCATIONS_CHANGED, EventNotifier
from gym_presence.geo import distance_m
from gym_presence.models import CandidateLocation, SavedLocation, VisitSession, new_id

logger = logging.getLogger(__name__)

R = TypeVar("R")


class _RecordCollection(Generic[R]):
    """A list of records stored under one blob key."""

    kind: str

    def __init__(self, blobs: PersistentRecordStore, key: str, errors: ErrorSink) -> None:
        self._blobs = blobs
        self._key = key
        self._errors = errors
        self._lock = asyncio.Lock()

    async def _load(self) -> list[R]:
        """Read the collection; a corrupt or unreadable blob degrades to []."""

        try:
            data = await asyncio.to_thread(self._blobs.read_blob, self._key)
        except OSError as exc:
            self._errors.report(PersistenceFailure(f"Failed to read {self.kind} records: {exc}"))
            return []
        if data is None:
            return []
        try:
            return decode_records(self.kind, data)
        except CodecError as exc:
            self._errors.report(PersistenceFailure(f"Failed to load {self.kind} records: {exc}"))
            return []

    async def _store(self, records: list[R]) -> None:
        try:
            data = encode_records(self.kind, records)
            await asyncio.to_thread(self._blobs.write_blob, self._key, data)
        except (CodecError, OSError) as exc:
            raise PersistenceFailure(f"Failed to write {self.kind} records: {exc}") from exc

    async def list_all(self) -> list[R]:
        async with self._lock:
            return await self._load()


class SavedLocationStore(_RecordCollection[SavedLocation]):
    """CRUD over user-saved gyms with spatial-duplicate rejection."""

    kind = "saved_location"

    def __init__(
        self,
        blobs: PersistentRecordStore,
        notifier: EventNotifier,
        errors: ErrorSink,
        config: EngineConfig | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        super().__init__(blobs, self._config.saved_locations_key, errors)
        self._notifier = notifier

    async def save(self, candidate: CandidateLocation, *, radius_m: float | None = None) -> SavedLocation:
        """Persist a search candidate as a new saved location.

        Raises:
            DuplicateLocation: An existing location lies within the duplicate radius.
            ValueError: Geofence radius outside the configured bounds.
            PersistenceFailure: The updated collection could not be written.
        """

        cfg = self._config
        radius = cfg.default_geofence_radius_m if radius_m is None else float(radius_m)
        if not (cfg.min_geofence_radius_m <= radius <= cfg.max_geofence_radius_m):
            raise ValueError(
                f"Geofence radius {radius}m outside [{cfg.min_geofence_radius_m}, {cfg.max_geofence_radius_m}]"
            )

        async with self._lock:
            current = await self._load()
            for existing in current:
                d = distance_m(existing.coordinate, candidate.coordinate)
                if d <= cfg.duplicate_radius_m:
                    raise DuplicateLocation(f"{existing.name!r} is already saved {d:.0f}m from {candidate.name!r}")

            loc = SavedLocation(
                id=new_id(),
                name=candidate.name,
                category=candidate.category,
                coordinate=candidate.coordinate,
                address=candidate.address,
                geofence_radius_m=radius,
            )
            updated = [*current, loc]
            await self._store(updated)
        logger.info("Saved location %s (%s)", loc.name, loc.id)
        self._notifier.publish(SAVED_LOCATIONS_CHANGED, tuple(updated))
        return loc

    async def delete(self, location_id: str) -> bool:
        """Remove a location by id. Returns False (and writes nothing) if absent."""

        async with self._lock:
            current = await self._load()
            updated = [loc for loc in current if loc.id != location_id]
            if len(updated) == len(current):
                return False
            await self._store(updated)
        logger.info("Deleted location %s", location_id)
        self._notifier.publish(SAVED_LOCATIONS_CHANGED, tuple(updated))
        return True

    async def get(self, location_id: str) -> SavedLocation | None:
        for loc in await self.list_all():
            if loc.id == location_id:
                return loc
        return None

    async def record_visit_append(self, location_id: str, timestamp_ms: int) -> SavedLocation | None:
        """Append a visit timestamp to a location's history. No-op if absent."""

        async with self._lock:
            current = await self._load()
            updated: list[SavedLocation] = []
            hit: SavedLocation | None = None
            for loc in current:
                if loc.id == location_id:
                    loc = replace(loc, visit_history=(*loc.visit_history, int(timestamp_ms)))
                    hit = loc
                updated.append(loc)
            if hit is None:
                return None
            await self._store(updated)
        self._notifier.publish(SAVED_LOCATIONS_CHANGED, tuple(updated))
        return hit


class VisitHistoryStore(_RecordCollection[VisitSession]):
    """Persisted log of visit sessions (open and closed)."""

    kind = "visit_session"

    def __init__(self, blobs: PersistentRecordStore, errors: ErrorSink, config: EngineConfig | None = None) -> None:
        cfg = config or EngineConfig()
        super().__init__(blobs, cfg.visits_key, errors)

    async def append(self, session: VisitSession) -> None:
        async with self._lock:
            current = await self._load()
            await self._store([*current, session])

    async def update(self, session: VisitSession) -> bool:
        """Replace the stored session with the same id. Returns False if unknown."""

        async with self._lock:
            current = await self._load()
            for i, v in enumerate(current):
                if v.id == session.id:
                    current[i] = session
                    await self._store(current)
                    return True
        return False

    async def list_for(self, saved_location_id: str) -> list[VisitSession]:
        return [v for v in await self.list_all() if v.saved_location_id == saved_location_id]
