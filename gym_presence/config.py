"""Engine configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunables for acquisition, geofencing, search and persistence.

    Defaults mirror the platform limits and the policies of the mobile app.
    """

    # Acquisition: fixes worse than this are dropped.
    accuracy_threshold_m: float = 100.0
    max_retries: int = 3

    # Geofencing. The region cap is a provider limit, enforced locally before monitor().
    region_cap: int = 20
    default_geofence_radius_m: float = 50.0
    min_geofence_radius_m: float = 25.0
    max_geofence_radius_m: float = 500.0

    # Two saved locations may not be closer than this.
    duplicate_radius_m: float = 50.0

    # Search fan-out: start narrow, widen when results are thin.
    initial_search_radius_m: float = 2_000.0
    full_search_radius_m: float = 5_000.0
    min_results_before_expand: int = 5
    page_size: int = 20
    dedup_precision: int = 4

    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 128

    event_queue_size: int = 256

    saved_locations_key: str = "saved_locations"
    visits_key: str = "visit_sessions"

    def __post_init__(self) -> None:
        if self.min_geofence_radius_m > self.max_geofence_radius_m:
            raise ValueError("min_geofence_radius_m must not exceed max_geofence_radius_m")
        if not (self.min_geofence_radius_m <= self.default_geofence_radius_m <= self.max_geofence_radius_m):
            raise ValueError("default_geofence_radius_m must lie within the geofence radius bounds")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.region_cap < 1:
            raise ValueError("region_cap must be >= 1")
