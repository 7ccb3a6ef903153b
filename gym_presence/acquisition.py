"""Location acquisition: authorization state machine plus accuracy/retry policy.

Policy (fixed, non-adaptive):
    - A fix is accepted only if its horizontal accuracy is within the threshold.
    - Provider failures are retried immediately up to ``max_retries`` consecutive
      times; past the cap, updates stop and LocationUnavailable is reported once.
    - Entering DENIED/RESTRICTED halts acquisition and reports PermissionDenied
      once per transition.
"""

from __future__ import annotations

import logging

from gym_presence.config import EngineConfig
from gym_presence.errors import ErrorSink, LocationUnavailable, PermissionDenied
from gym_presence.events import AUTHORIZATION_CHANGED, LOCATION_CHANGED, EventNotifier
from gym_presence.models import AuthorizationState, Coordinate, PositionSample
from gym_presence.provider import PositionProvider

logger = logging.getLogger(__name__)


class LocationAcquisitionController:
    """Wraps a position provider and publishes a stabilized current location.

    All ``handle_*`` methods must be called from the engine's owner loop.
    """

    def __init__(
        self,
        provider: PositionProvider,
        notifier: EventNotifier,
        errors: ErrorSink,
        config: EngineConfig | None = None,
        initial_state: AuthorizationState = AuthorizationState.UNDETERMINED,
    ) -> None:
        self._provider = provider
        self._notifier = notifier
        self._errors = errors
        self._config = config or EngineConfig()
        self._state = initial_state
        self._current: Coordinate | None = None
        self._last_sample: PositionSample | None = None
        self._failures = 0
        self._active = False
        self._wants_updates = False
        self._denial_reported = False
        self._exhausted = False
        self.rejected_samples = 0

    @property
    def authorization_state(self) -> AuthorizationState:
        return self._state

    @property
    def current_location(self) -> Coordinate | None:
        return self._current

    @property
    def last_sample(self) -> PositionSample | None:
        return self._last_sample

    @property
    def is_active(self) -> bool:
        """True while the provider is delivering updates on our behalf."""

        return self._active

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def request_permission(self) -> None:
        self._provider.request_authorization()

    def start_acquisition(self) -> None:
        """Begin updates, asking for permission first when still undetermined."""

        self._wants_updates = True
        self._failures = 0
        self._exhausted = False
        if self._state is AuthorizationState.GRANTED:
            self._begin_updates()
        elif self._state is AuthorizationState.UNDETERMINED:
            self._provider.request_authorization()
        else:
            self._report_denied()

    def stop_acquisition(self) -> None:
        self._wants_updates = False
        self._halt()

    def handle_authorization_changed(self, state: AuthorizationState) -> None:
        previous = self._state
        self._state = state
        if state is not previous:
            logger.info("Authorization changed: %s -> %s", previous.value, state.value)
            self._notifier.publish(AUTHORIZATION_CHANGED, state)

        if state is AuthorizationState.GRANTED:
            self._denial_reported = False
            self._failures = 0
            self._exhausted = False
            if self._wants_updates and not self._active:
                self._begin_updates()
        elif state.is_blocked:
            self._halt()
            if state is not previous:
                # a new transition may surface the condition again
                self._denial_reported = False
            self._report_denied()
        elif self._wants_updates:
            self._provider.request_authorization()

    def handle_position_updated(self, sample: PositionSample) -> bool:
        """Apply a raw fix. Returns True if it was accepted and published."""

        acc = sample.horizontal_accuracy_m
        if acc < 0 or acc > self._config.accuracy_threshold_m:
            self.rejected_samples += 1
            logger.debug("Rejected fix with accuracy %.1fm", acc)
            return False
        self._last_sample = sample
        self._current = sample.coordinate
        self._failures = 0
        self._exhausted = False
        self._notifier.publish(LOCATION_CHANGED, sample.coordinate)
        return True

    def handle_update_failed(self, reason: str) -> None:
        if self._exhausted or not self._wants_updates:
            logger.debug("Ignoring update failure (%s), not retrying", reason)
            return
        if self._failures < self._config.max_retries:
            self._failures += 1
            logger.info("Location update failed (%s); retry %d/%d", reason, self._failures, self._config.max_retries)
            if self._state is AuthorizationState.GRANTED:
                self._provider.start_updates()
                self._active = True
            return
        self._exhausted = True
        self._halt()
        self._errors.report(LocationUnavailable(f"Location updates failed {self._failures + 1} times: {reason}"))

    def _begin_updates(self) -> None:
        self._provider.start_updates()
        self._active = True

    def _halt(self) -> None:
        if self._active:
            self._provider.stop_updates()
            self._active = False

    def _report_denied(self) -> None:
        if self._denial_reported:
            return
        self._denial_reported = True
        self._errors.report(PermissionDenied())
