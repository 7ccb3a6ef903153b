"""Typed publish/subscribe bus between the engine and its consumers.

Each topic carries one payload type. Delivery is synchronous, in subscription
order, to every current subscriber; late subscribers do not see past events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from gym_presence.models import AuthorizationState, Coordinate, SavedLocation, VisitSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Topic(Generic[T]):
    """A named channel. Identity is the name."""

    name: str


LOCATION_CHANGED: Topic[Coordinate] = Topic("location_changed")
AUTHORIZATION_CHANGED: Topic[AuthorizationState] = Topic("authorization_changed")
SAVED_LOCATIONS_CHANGED: Topic[tuple[SavedLocation, ...]] = Topic("saved_locations_changed")
VISIT_STARTED: Topic[VisitSession] = Topic("visit_started")
VISIT_ENDED: Topic[VisitSession] = Topic("visit_ended")

ALL_TOPICS = (
    LOCATION_CHANGED,
    AUTHORIZATION_CHANGED,
    SAVED_LOCATIONS_CHANGED,
    VISIT_STARTED,
    VISIT_ENDED,
)


class Subscription:
    """Handle returned by ``EventNotifier.subscribe``."""

    def __init__(self, notifier: EventNotifier, topic: Topic, handler: Callable) -> None:
        self._notifier = notifier
        self.topic = topic
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._notifier._remove(self)
            self.active = False


class EventNotifier:
    """In-process typed event bus."""

    def __init__(self) -> None:
        self._subs: dict[str, list[Subscription]] = {}

    def subscribe(self, topic: Topic[T], handler: Callable[[T], None]) -> Subscription:
        sub = Subscription(self, topic, handler)
        self._subs.setdefault(topic.name, []).append(sub)
        return sub

    def publish(self, topic: Topic[T], payload: T) -> int:
        """Deliver ``payload`` to every subscriber of ``topic``.

        Returns:
            Number of subscribers the payload was delivered to without error.
        """

        delivered = 0
        for sub in list(self._subs.get(topic.name, ())):
            try:
                sub.handler(payload)
            except Exception:
                # one broken consumer must not starve the rest
                logger.exception("Subscriber for %s failed", topic.name)
                continue
            delivered += 1
        logger.debug("Published %s to %d subscriber(s)", topic.name, delivered)
        return delivered

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._subs.get(topic.name, ()))

    def _remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.topic.name, [])
        if sub in subs:
            subs.remove(sub)
