"""Unit tests for proximity search and distance helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pytest

from src.planning.algorithms.base import (
    Location,
    SpeedProfile,
    estimate_travel_time,
    format_distance,
    format_eta,
    haversine_distance,
    validate_coordinates,
)
from src.planning.algorithms.geo import find_nearest

ORIGIN = Location(lat=12.9716, lng=77.5946)
KM_PER_DEGREE = 111.1949


@dataclass
class _Unit:
    id: str
    location: Optional[Location]
    available: bool = True


def _north(km: float) -> Location:
    return Location(lat=ORIGIN.lat + km / KM_PER_DEGREE, lng=ORIGIN.lng)


def test_haversine_is_symmetric_and_zero_on_self() -> None:
    other = Location(lat=13.0827, lng=80.2707)

    assert haversine_distance(ORIGIN, ORIGIN) == 0
    assert haversine_distance(ORIGIN, other) == haversine_distance(other, ORIGIN)


def test_haversine_rounds_to_two_decimals() -> None:
    assert haversine_distance(ORIGIN, _north(3)) == pytest.approx(3.0, abs=0.01)
    assert haversine_distance(ORIGIN, _north(12.345)) == pytest.approx(12.35, abs=0.01)


def test_eta_rounds_up_to_whole_minutes() -> None:
    # 3km @ 40km/h = 4.5 分钟
    assert estimate_travel_time(3, SpeedProfile.VEHICLE) == 5
    assert estimate_travel_time(1, SpeedProfile.ON_FOOT) == 4
    assert estimate_travel_time(0, SpeedProfile.VEHICLE) == 0


def test_non_positive_speed_is_rejected() -> None:
    with pytest.raises(ValueError):
        estimate_travel_time(3, 0)
    with pytest.raises(ValueError):
        find_nearest(ORIGIN, [], location_of=lambda u: u.location, speed_kmh=-5)


def test_validate_coordinates() -> None:
    assert validate_coordinates(0, 0)
    assert validate_coordinates(-90, 180)
    assert not validate_coordinates(91, 0)
    assert not validate_coordinates(0, -181)
    assert not validate_coordinates(float("nan"), 0)
    assert not validate_coordinates(True, 0)
    assert not validate_coordinates("12.9", 77.5)


def test_find_nearest_sorts_filters_and_limits() -> None:
    units = [
        _Unit("far", _north(8)),
        _Unit("near", _north(1)),
        _Unit("mid", _north(4)),
        _Unit("outside", _north(25)),
        _Unit("busy", _north(0.5), available=False),
    ]

    hits = find_nearest(
        ORIGIN,
        units,
        location_of=lambda u: u.location,
        eligibility=lambda u: u.available,
        max_radius_km=20,
    )

    assert [h.candidate.id for h in hits] == ["near", "mid", "far"]
    assert hits[0].eta_min == estimate_travel_time(hits[0].distance_km, SpeedProfile.VEHICLE)

    limited = find_nearest(ORIGIN, units, location_of=lambda u: u.location, limit=2)
    assert [h.candidate.id for h in limited] == ["busy", "near"]


def test_find_nearest_skips_missing_or_invalid_coordinates() -> None:
    units = [
        _Unit("no-location", None),
        _Unit("bad", Location(lat=200, lng=0)),
        _Unit("ok", _north(2)),
    ]

    hits = find_nearest(ORIGIN, units, location_of=lambda u: u.location)

    assert [h.candidate.id for h in hits] == ["ok"]


def test_find_nearest_empty_pool_is_not_an_error() -> None:
    assert find_nearest(ORIGIN, [], location_of=lambda u: u.location) == []


def test_find_nearest_rejects_invalid_origin() -> None:
    with pytest.raises(ValueError):
        find_nearest(Location(lat=95, lng=0), [], location_of=lambda u: u.location)


def test_display_helpers() -> None:
    assert format_distance(0.45) == "450m"
    assert format_distance(3.14) == "3.1km"
    assert format_eta(12) == "12 min"
    assert format_eta(75) == "1h 15min"
