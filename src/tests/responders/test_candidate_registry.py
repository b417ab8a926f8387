"""候选注册表: 半径查询、血型过滤与原子预占"""
from __future__ import annotations

import asyncio

from src.domains.responders.postgis_registry import PostgisCandidateRegistry
from src.domains.responders.registry import InMemoryCandidateRegistry
from src.domains.responders.schemas import (
    AmbulanceSnapshot,
    AvailabilityStatus,
    BedCategory,
    BloodType,
    DonorSnapshot,
    GeoPoint,
    HospitalSnapshot,
    ResponderKind,
)
from src.planning.algorithms.base import Location

ORIGIN = Location(lat=12.9716, lng=77.5946)
KM_PER_DEGREE = 111.1949


def _at(km: float) -> GeoPoint:
    return GeoPoint(latitude=ORIGIN.lat + km / KM_PER_DEGREE, longitude=ORIGIN.lng)


def _registry() -> InMemoryCandidateRegistry:
    registry = InMemoryCandidateRegistry()
    registry.add(AmbulanceSnapshot(id="near", current_location=_at(2)))
    registry.add(AmbulanceSnapshot(id="far", current_location=_at(25)))
    registry.add(AmbulanceSnapshot(id="lost", current_location=GeoPoint()))
    registry.add(DonorSnapshot(id="o-neg", blood_type=BloodType.o_neg, current_location=_at(1)))
    registry.add(DonorSnapshot(id="a-pos", blood_type=BloodType.a_pos, current_location=_at(1)))
    return registry


def test_radius_query_drops_far_and_unlocated_candidates() -> None:
    found = asyncio.run(_registry().query_ambulances(ORIGIN, 20))
    assert [a.id for a in found] == ["near"]


def test_donor_query_filters_by_blood_type() -> None:
    registry = _registry()
    only_o = asyncio.run(registry.query_donors(ORIGIN, 10, [BloodType.o_neg, BloodType.o_pos]))
    everyone = asyncio.run(registry.query_donors(ORIGIN, 10))
    assert [d.id for d in only_o] == ["o-neg"]
    assert {d.id for d in everyone} == {"o-neg", "a-pos"}


def test_concurrent_reserve_succeeds_once() -> None:
    registry = _registry()

    async def scenario():
        return await asyncio.gather(*(
            registry.reserve(ResponderKind.ambulance, "near") for _ in range(5)
        ))

    results = asyncio.run(scenario())
    assert results.count(True) == 1
    assert registry.status_of(ResponderKind.ambulance, "near") == AvailabilityStatus.busy


def test_release_returns_candidate_to_pool() -> None:
    registry = _registry()
    asyncio.run(registry.reserve(ResponderKind.ambulance, "near"))
    asyncio.run(registry.release(ResponderKind.ambulance, "near"))
    assert registry.status_of(ResponderKind.ambulance, "near") == AvailabilityStatus.available
    assert asyncio.run(registry.reserve(ResponderKind.ambulance, "missing")) is False


def test_update_location_moves_candidate() -> None:
    registry = _registry()
    assert asyncio.run(registry.update_location(ResponderKind.ambulance, "far", ORIGIN.lat, ORIGIN.lng)) is True
    assert asyncio.run(registry.update_location(ResponderKind.ambulance, "ghost", 0, 0)) is False
    found = asyncio.run(registry.query_ambulances(ORIGIN, 20))
    assert {a.id for a in found} == {"near", "far"}


# ============================================================================
# PostGIS 注册表（伪造会话，只校验SQL参数与行映射）
# ============================================================================

class _Result:
    def __init__(self, rows=None, rowcount: int = 0) -> None:
        self._rows = rows or []
        self.rowcount = rowcount

    def mappings(self):
        return self

    def all(self):
        return self._rows

    def first(self):
        return self._rows[0] if self._rows else None


class _Session:
    def __init__(self, result: _Result, calls: list) -> None:
        self._result = result
        self._calls = calls
        self.committed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, sql, params):
        self._calls.append((str(sql), params))
        return self._result

    async def commit(self):
        self.committed = True


def _factory(result: _Result, calls: list):
    return lambda: _Session(result, calls)


def test_postgis_query_maps_rows_to_snapshots() -> None:
    calls: list = []
    rows = [{
        "id": "h-1",
        "name": "City Hospital",
        "status": "available",
        "is_active": True,
        "is_verified": True,
        "accepting_emergencies": True,
        "bed_availability": {"emergency": {"total": 10, "available": 3}},
        "facilities": None,
        "specialists": [{"specialization": "cardiology"}],
        "lat": 12.98,
        "lng": 77.6,
    }]
    registry = PostgisCandidateRegistry(_factory(_Result(rows), calls))

    hospitals = asyncio.run(registry.query_hospitals(ORIGIN, 30))

    sql, params = calls[0]
    assert "ST_DWithin" in sql
    assert params["radius_m"] == 30000
    assert params["origin_lat"] == ORIGIN.lat
    hospital = hospitals[0]
    assert isinstance(hospital, HospitalSnapshot)
    assert hospital.location.latitude == 12.98
    assert hospital.available_beds(BedCategory.emergency) == 3
    assert hospital.has_available_specialist("cardiology")


def test_postgis_donor_query_passes_blood_types() -> None:
    calls: list = []
    registry = PostgisCandidateRegistry(_factory(_Result([]), calls))
    asyncio.run(registry.query_donors(ORIGIN, 10, [BloodType.o_neg, BloodType.b_pos]))
    sql, params = calls[0]
    assert "ANY(:blood_types)" in sql
    assert params["blood_types"] == ["O-", "B+"]


def test_postgis_reserve_uses_affected_row_count() -> None:
    won = PostgisCandidateRegistry(_factory(_Result(rowcount=1), []))
    lost = PostgisCandidateRegistry(_factory(_Result(rowcount=0), []))
    assert asyncio.run(won.reserve(ResponderKind.ambulance, "amb-1")) is True
    assert asyncio.run(lost.reserve(ResponderKind.ambulance, "amb-1")) is False


def test_postgis_reporter_defaults_empty_lists() -> None:
    rows = [{
        "id": "u-1", "full_name": "Ravi", "email": None, "date_of_birth": None, "gender": None,
        "blood_type": "AB-", "chronic_conditions": None, "current_medications": None,
        "emergency_contacts": None,
    }]
    registry = PostgisCandidateRegistry(_factory(_Result(rows), []))
    profile = asyncio.run(registry.get_reporter("u-1"))
    assert profile.blood_type == BloodType.ab_neg
    assert profile.emergency_contacts == []
