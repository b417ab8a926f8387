"""HTTP接口: 通过TestClient走完整的路由/服务/异常处理链路"""
from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from src.core.clock import FrozenClock
from src.core.config import Settings
from src.domains.responders.registry import InMemoryCandidateRegistry
from src.domains.responders.schemas import (
    AmbulanceSnapshot,
    AmbulanceType,
    AvailabilityStatus,
    BedCategory,
    BedCount,
    GeoPoint,
    HospitalSnapshot,
    ResponderKind,
)
from src.main import build_services, create_app

LAT, LNG = 12.9716, 77.5946
KM_PER_DEGREE = 111.1949
BASE = "/api/v1"


@asynccontextmanager
async def _no_lifespan(app):
    yield


@pytest.fixture
def registry() -> InMemoryCandidateRegistry:
    registry = InMemoryCandidateRegistry()
    registry.add(AmbulanceSnapshot(
        id="amb-1",
        type=AmbulanceType.als,
        current_location=GeoPoint(latitude=LAT + 2 / KM_PER_DEGREE, longitude=LNG),
    ))
    registry.add(HospitalSnapshot(
        id="hosp-1",
        name="St. Martha's",
        location=GeoPoint(latitude=LAT + 4 / KM_PER_DEGREE, longitude=LNG),
        bed_availability={BedCategory.emergency: BedCount(total=8, available=2)},
    ))
    return registry


@pytest.fixture
def client(registry):
    settings = Settings(api_prefix=BASE, push_gateway_url=None, database_url=None)
    app = create_app(settings, lifespan_handler=_no_lifespan)
    build_services(app, settings, registry=registry, clock=FrozenClock())
    with TestClient(app) as test_client:
        yield test_client


def _report(**overrides) -> dict:
    body = {
        "type": "bystander",
        "reported_by": "passerby-1",
        "location": {"latitude": LAT, "longitude": LNG, "address": "Brigade Road"},
        "triage": {"conscious": False, "breathing": True, "heavy_bleeding": False},
    }
    body.update(overrides)
    return body


def _create(client) -> dict:
    resp = client.post(f"{BASE}/incidents", json=_report())
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_incident_returns_dispatch_summary(client) -> None:
    summary = _create(client)

    incident = summary["incident"]
    assert incident["severity"] == "high"
    assert incident["status"] == "ambulance_dispatched"
    assert incident["assignments"]["ambulance"] == "amb-1"
    assert incident["assignments"]["hospital"] == "hosp-1"
    assert summary["ambulance_found"] is True
    assert summary["hospital_name"] == "St. Martha's"
    assert summary["tracking_link"].endswith(f"/track/{incident['id']}")


def test_get_and_list_incidents(client) -> None:
    incident_id = _create(client)["incident"]["id"]

    resp = client.get(f"{BASE}/incidents/{incident_id}")
    assert resp.status_code == 200
    assert resp.json()["id"] == incident_id

    listing = client.get(f"{BASE}/incidents", params={"severity": "high"}).json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == incident_id
    assert client.get(f"{BASE}/incidents", params={"severity": "low"}).json()["total"] == 0


def test_unknown_incident_is_404(client) -> None:
    resp = client.get(f"{BASE}/incidents/{uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "INCIDENT_NOT_FOUND"


def test_invalid_triage_is_400(client) -> None:
    body = _report(triage={"conscious": "yes", "breathing": True, "heavy_bleeding": False})
    resp = client.post(f"{BASE}/incidents", json=body)
    assert resp.status_code == 400
    assert resp.json()["error_code"] == "VALIDATION_ERROR"


def test_second_active_report_from_same_reporter_is_409(client) -> None:
    _create(client)
    resp = client.post(f"{BASE}/incidents", json=_report())
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "INCIDENT_ALREADY_ACTIVE"


def test_status_progression_and_illegal_transition(client) -> None:
    incident_id = _create(client)["incident"]["id"]
    actor = {"kind": "ambulance", "id": "amb-1"}

    resp = client.post(f"{BASE}/incidents/{incident_id}/status", json={"status": "ambulance_arrived", "actor": actor})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ambulance_arrived"

    resp = client.post(f"{BASE}/incidents/{incident_id}/status", json={"status": "reached_hospital", "actor": actor})
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "INCIDENT_INVALID_STATE"

    resp = client.post(f"{BASE}/incidents/{incident_id}/status", json={"status": "resolved", "actor": actor})
    assert resp.status_code == 400

    timeline = client.get(f"{BASE}/incidents/{incident_id}/timeline").json()
    assert timeline[-1]["event"] == "ambulance_arrived"


def test_cancel_releases_ambulance_and_closes_incident(client, registry) -> None:
    incident_id = _create(client)["incident"]["id"]
    body = {"reason": "patient refused transport", "actor": {"kind": "user", "id": "passerby-1"}}

    resp = client.post(f"{BASE}/incidents/{incident_id}/cancel", json=body)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert registry.status_of(ResponderKind.ambulance, "amb-1") == AvailabilityStatus.available

    again = client.post(f"{BASE}/incidents/{incident_id}/cancel", json=body)
    assert again.status_code == 409


def test_resolve_records_outcome(client) -> None:
    incident_id = _create(client)["incident"]["id"]
    resp = client.post(
        f"{BASE}/incidents/{incident_id}/resolve",
        json={"outcome": {"patient_status": "stable", "hospital_admitted": True}},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "resolved"
    assert body["outcome"]["patient_status"] == "stable"


def test_direct_slots_cannot_be_accepted(client) -> None:
    incident_id = _create(client)["incident"]["id"]
    resp = client.post(
        f"{BASE}/incidents/{incident_id}/accept",
        json={"slot": "ambulance", "candidate_id": "amb-1"},
    )
    assert resp.status_code == 400


def test_tracking_snapshot_and_offers(client) -> None:
    incident_id = _create(client)["incident"]["id"]

    tracking = client.get(f"{BASE}/incidents/{incident_id}/tracking").json()
    assert tracking["incident_id"] == incident_id
    assert tracking["assignments"]["ambulance"] == "amb-1"

    offers = client.get(f"{BASE}/incidents/{incident_id}/offers")
    assert offers.status_code == 200
    assert offers.json() == []


def test_tracking_snapshot_carries_last_known_ambulance_position(client) -> None:
    incident_id = _create(client)["incident"]["id"]
    url = f"{BASE}/incidents/{incident_id}/tracking"

    before = client.get(url).json()
    assert before["ambulance_location"] is None
    assert before["volunteer_location"] is None

    client.put(f"{BASE}/responders/ambulance/amb-1/location", json={"latitude": 12.98, "longitude": 77.59, "speed_kmh": 40})
    tracking = client.get(url).json()
    assert tracking["ambulance_location"]["latitude"] == 12.98
    assert tracking["ambulance_location"]["speed_kmh"] == 40
    assert tracking["volunteer_location"] is None

    # 超过TTL的位置视为未知
    client.app.state.clock.advance(seconds=301)
    stale = client.get(url).json()
    assert stale["ambulance_location"] is None


def test_responder_location_roundtrip(client) -> None:
    url = f"{BASE}/responders/ambulance/amb-1/location"
    resp = client.put(url, json={"latitude": 12.95, "longitude": 77.6, "heading": 180})
    assert resp.status_code == 200
    assert resp.json()["known"] is True

    current = client.get(url).json()
    assert current["known"] is True
    assert current["latitude"] == 12.95

    unknown = client.get(f"{BASE}/responders/volunteer/nobody/location").json()
    assert unknown["known"] is False
    assert unknown["latitude"] is None


def test_location_update_for_unknown_responder_is_404(client) -> None:
    resp = client.put(f"{BASE}/responders/ambulance/ghost/location", json={"latitude": 1, "longitude": 2})
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "AMBULANCE_NOT_FOUND"


def test_health_endpoint_without_backends(client) -> None:
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["redis"] is None
    assert body["database"] is None
