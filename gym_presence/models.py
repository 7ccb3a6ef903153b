"""Data models for positions, saved locations, search candidates and visits."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Final


class AuthorizationState(str, Enum):
    """Location permission as reported by the position provider."""

    UNDETERMINED = "undetermined"
    GRANTED = "granted"
    DENIED = "denied"
    RESTRICTED = "restricted"

    @property
    def is_blocked(self) -> bool:
        return self in (AuthorizationState.DENIED, AuthorizationState.RESTRICTED)


class LocationCategory(str, Enum):
    """Gym taxonomy. Values are the display names."""

    FITNESS = "Fitness Center"
    CROSSFIT = "CrossFit"
    YOGA = "Yoga Studio"
    MARTIAL_ARTS = "Martial Arts"
    OTHER = "Other"


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A WGS84 point in decimal degrees."""

    latitude: float
    longitude: float

    def __str__(self) -> str:
        return f"{self.latitude:.6f},{self.longitude:.6f}"


@dataclass(frozen=True, slots=True)
class PositionSample:
    """A single raw fix from the position provider.

    Attributes:
        coordinate: Reported position.
        horizontal_accuracy_m: Accuracy radius in meters. Negative means invalid.
        timestamp_ms: Unix epoch milliseconds.
    """

    coordinate: Coordinate
    horizontal_accuracy_m: float
    timestamp_ms: int


def new_id() -> str:
    """Mint an opaque unique identifier."""

    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class SavedLocation:
    """A user-saved gym with its geofence and visit history.

    Note:
        visit_history holds epoch-ms timestamps in append order.
    """

    id: str
    name: str
    category: LocationCategory
    coordinate: Coordinate
    address: str
    geofence_radius_m: float
    visit_history: tuple[int, ...] = ()

    def visits_in_last(self, days: int, now_ms: int) -> int:
        """Count visits recorded within the last ``days`` days."""

        cutoff = now_ms - days * 24 * 60 * 60 * 1000
        return sum(1 for ts in self.visit_history if ts >= cutoff)


@dataclass(frozen=True, slots=True)
class CandidateLocation:
    """A proximity search result. Never persisted directly."""

    id: str
    name: str
    coordinate: Coordinate
    address: str
    distance_m: float
    category: LocationCategory


@dataclass(frozen=True, slots=True)
class MonitoredRegion:
    """A circular region registered with the position provider."""

    saved_location_id: str
    center: Coordinate
    radius_m: float

    @classmethod
    def for_location(cls, loc: SavedLocation) -> MonitoredRegion:
        return cls(saved_location_id=loc.id, center=loc.coordinate, radius_m=loc.geofence_radius_m)


@dataclass(frozen=True, slots=True)
class VisitSession:
    """A time interval spent inside a saved location's geofence."""

    saved_location_id: str
    start_ms: int
    end_ms: int | None = None
    id: str = field(default_factory=new_id)

    @property
    def is_active(self) -> bool:
        return self.end_ms is None

    @property
    def duration_seconds(self) -> float | None:
        """Visit duration in seconds, or None while the visit is open."""

        if self.end_ms is None:
            return None
        return max(0.0, (self.end_ms - self.start_ms) / 1000.0)


DEFAULT_TZ: Final[str] = "UTC"
