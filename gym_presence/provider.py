"""Position provider contract and the events it emits.

A provider pushes callbacks from threads the engine does not control. Callbacks
go to a ``PositionListener``; the engine's listener only enqueues the matching
event object for its owner loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

from gym_presence.models import AuthorizationState, MonitoredRegion, PositionSample


@dataclass(frozen=True, slots=True)
class AuthorizationChanged:
    state: AuthorizationState


@dataclass(frozen=True, slots=True)
class PositionUpdated:
    sample: PositionSample


@dataclass(frozen=True, slots=True)
class UpdateFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class RegionEntered:
    region_id: str


@dataclass(frozen=True, slots=True)
class RegionExited:
    region_id: str


@dataclass(frozen=True, slots=True)
class MonitoringFailed:
    region_id: str
    reason: str


ProviderEvent = Union[
    AuthorizationChanged,
    PositionUpdated,
    UpdateFailed,
    RegionEntered,
    RegionExited,
    MonitoringFailed,
]


class PositionListener(Protocol):
    """Receives provider callbacks. May be called from any thread."""

    def on_event(self, event: ProviderEvent) -> None: ...


class PositionProvider(Protocol):
    """Platform location service: authorization, fixes and region monitoring.

    Region ids are the saved location ids.
    """

    def set_listener(self, listener: PositionListener) -> None: ...

    def request_authorization(self) -> None: ...

    def start_updates(self) -> None: ...

    def stop_updates(self) -> None: ...

    def monitor(self, region: MonitoredRegion) -> None: ...

    def stop_monitoring(self, region: MonitoredRegion) -> None: ...
