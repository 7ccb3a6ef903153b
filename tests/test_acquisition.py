"""Tests for the authorization state machine and the accuracy/retry policy."""

import pytest
from fakes import FakePositionProvider

from gym_presence.acquisition import LocationAcquisitionController
from gym_presence.errors import ErrorSink, LocationUnavailable, PermissionDenied
from gym_presence.events import AUTHORIZATION_CHANGED, LOCATION_CHANGED, EventNotifier
from gym_presence.models import AuthorizationState, Coordinate, PositionSample


def _sample(acc: float, lat: float = 40.0) -> PositionSample:
    return PositionSample(coordinate=Coordinate(lat, -73.0), horizontal_accuracy_m=acc, timestamp_ms=0)


@pytest.fixture
def provider() -> FakePositionProvider:
    return FakePositionProvider()


@pytest.fixture
def notifier() -> EventNotifier:
    return EventNotifier()


@pytest.fixture
def errors() -> ErrorSink:
    return ErrorSink()


def _controller(provider, notifier, errors, state=AuthorizationState.GRANTED) -> LocationAcquisitionController:
    return LocationAcquisitionController(provider, notifier, errors, initial_state=state)


def test_accuracy_filter(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    published: list[Coordinate] = []
    notifier.subscribe(LOCATION_CHANGED, published.append)

    assert ctl.handle_position_updated(_sample(10.0, lat=40.1))
    assert not ctl.handle_position_updated(_sample(150.0, lat=41.0))
    assert not ctl.handle_position_updated(_sample(-1.0, lat=42.0))

    assert ctl.current_location == Coordinate(40.1, -73.0)
    assert published == [Coordinate(40.1, -73.0)]
    assert ctl.rejected_samples == 2


def test_accuracy_at_threshold_is_accepted(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    assert ctl.handle_position_updated(_sample(100.0))


def test_start_when_granted_begins_updates(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    ctl.start_acquisition()
    assert provider.calls == ["start_updates"]
    assert ctl.is_active


def test_start_when_undetermined_requests_authorization(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors, AuthorizationState.UNDETERMINED)
    states: list[AuthorizationState] = []
    notifier.subscribe(AUTHORIZATION_CHANGED, states.append)

    ctl.start_acquisition()
    assert provider.calls == ["request_authorization"]
    assert not ctl.is_active

    ctl.handle_authorization_changed(AuthorizationState.GRANTED)
    assert provider.calls == ["request_authorization", "start_updates"]
    assert states == [AuthorizationState.GRANTED]


def test_retries_then_location_unavailable_once(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    ctl.start_acquisition()

    for _ in range(3):
        ctl.handle_update_failed("no fix")
    assert errors.recent == []
    assert provider.count("start_updates") == 4

    ctl.handle_update_failed("no fix")
    ctl.handle_update_failed("no fix")
    assert [type(e) for e in errors.recent] == [LocationUnavailable]
    assert provider.count("start_updates") == 4
    assert provider.count("stop_updates") == 1
    assert not ctl.is_active


def test_good_fix_resets_failure_counter(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    ctl.start_acquisition()
    ctl.handle_update_failed("no fix")
    ctl.handle_update_failed("no fix")
    ctl.handle_position_updated(_sample(5.0))
    assert ctl.consecutive_failures == 0
    for _ in range(3):
        ctl.handle_update_failed("no fix")
    assert errors.recent == []


def test_denial_reported_once_and_halts(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    ctl.start_acquisition()

    ctl.handle_authorization_changed(AuthorizationState.DENIED)
    ctl.handle_authorization_changed(AuthorizationState.DENIED)
    ctl.start_acquisition()

    assert [type(e) for e in errors.recent] == [PermissionDenied]
    assert provider.count("stop_updates") == 1
    assert not ctl.is_active
    assert ctl.authorization_state is AuthorizationState.DENIED


def test_new_denial_transition_reports_again(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    ctl.start_acquisition()
    ctl.handle_authorization_changed(AuthorizationState.DENIED)
    ctl.handle_authorization_changed(AuthorizationState.GRANTED)
    assert provider.count("start_updates") == 2
    ctl.handle_authorization_changed(AuthorizationState.RESTRICTED)
    assert [type(e) for e in errors.recent] == [PermissionDenied, PermissionDenied]


def test_stop_acquisition(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    ctl.start_acquisition()
    ctl.stop_acquisition()
    assert provider.calls == ["start_updates", "stop_updates"]
    # a later grant does not resume updates nobody asked for
    ctl.handle_authorization_changed(AuthorizationState.DENIED)
    ctl.handle_authorization_changed(AuthorizationState.GRANTED)
    assert provider.count("start_updates") == 1


def test_failures_after_stop_are_ignored(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors)
    ctl.start_acquisition()
    ctl.stop_acquisition()
    for _ in range(6):
        ctl.handle_update_failed("late failure")
    assert errors.recent == []
    assert provider.calls == ["start_updates", "stop_updates"]
    assert ctl.consecutive_failures == 0
    assert not ctl.is_active


def test_request_permission_delegates(provider, notifier, errors) -> None:
    ctl = _controller(provider, notifier, errors, AuthorizationState.UNDETERMINED)
    ctl.request_permission()
    assert provider.calls == ["request_authorization"]
