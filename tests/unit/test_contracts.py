import datetime as dt

import pytest
from fakes import build_result
from pydantic import ValidationError

from locus.core.contracts import Estimate, GeolocationState, Result


def test_result_is_immutable() -> None:
    result = build_result("file")

    with pytest.raises(ValidationError):
        result.lat = 10.0  # type: ignore[misc]


@pytest.mark.parametrize("confidence", [-0.01, 1.01])
def test_result_rejects_confidence_outside_unit_interval(confidence: float) -> None:
    with pytest.raises(ValidationError):
        build_result("geoip", confidence=confidence)


def test_result_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValidationError):
        Result(
            key="host",
            lat=0.0,
            lon=0.0,
            accuracy_meters=10.0,
            confidence=0.5,
            source="file",
            ttl=dt.timedelta(0),
        )


def test_result_expiry_window() -> None:
    at = dt.datetime(2025, 1, 1, tzinfo=dt.UTC)
    result = build_result("file", at=at, ttl=60)

    assert result.expires_at == at + dt.timedelta(seconds=60)
    assert not result.is_expired(at + dt.timedelta(seconds=59))
    assert result.is_expired(at + dt.timedelta(seconds=60))


def test_naive_timestamps_are_treated_as_utc() -> None:
    result = build_result("file", at=dt.datetime(2025, 1, 1, 12, 0))

    assert result.at.tzinfo is dt.UTC


def test_estimate_without_result_is_unknown() -> None:
    estimate = Estimate(key="host")

    assert not estimate.is_known
    assert estimate.expires_at is None


def test_state_reports_first_reading_as_change() -> None:
    state = GeolocationState()

    assert state.has_changed(0.0, 0.0, None, 0.0)


def test_state_suppresses_identical_readings() -> None:
    state = GeolocationState()
    state.update(52.5, 13.4, 34.0, 10.0)

    assert not state.has_changed(52.5, 13.4, 34.0, 10.0)
    assert state.has_changed(52.5, 13.4, 34.0, 11.0)
    assert state.has_changed(52.6, 13.4, 34.0, 10.0)


def test_state_treats_unknown_altitude_as_distinct_from_zero() -> None:
    state = GeolocationState()
    state.update(52.5, 13.4, None, 10.0)

    assert not state.has_changed(52.5, 13.4, None, 10.0)
    assert state.has_changed(52.5, 13.4, 0.0, 10.0)


def test_state_tolerance_absorbs_noise() -> None:
    state = GeolocationState(tolerance=0.001)
    state.update(52.5, 13.4, None, 10.0)

    assert not state.has_changed(52.5004, 13.4, None, 10.0)
    assert state.has_changed(52.502, 13.4, None, 10.0)
