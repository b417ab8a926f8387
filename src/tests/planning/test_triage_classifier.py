"""Unit tests for triage severity and the generated action plan."""
from __future__ import annotations

import pytest

from src.domains.incidents.schemas import IncidentType, Severity, TriageAnswers
from src.domains.responders.schemas import AmbulanceType
from src.planning.algorithms.triage import (
    calculate_severity,
    extract_specialties,
    generate_action_plan,
    severity_for_report,
    validate_triage,
)


def _triage(conscious: bool = True, breathing: bool = True, heavy_bleeding: bool = False) -> TriageAnswers:
    return TriageAnswers(conscious=conscious, breathing=breathing, heavy_bleeding=heavy_bleeding)


@pytest.mark.parametrize(
    "conscious, breathing, bleeding, expected",
    [
        (False, False, False, Severity.critical),
        (True, False, False, Severity.critical),
        (True, False, True, Severity.critical),
        (False, True, False, Severity.high),
        (True, True, True, Severity.high),
        (True, True, False, Severity.medium),
    ],
)
def test_severity_decision_table(conscious: bool, breathing: bool, bleeding: bool, expected: Severity) -> None:
    assert calculate_severity(_triage(conscious, breathing, bleeding)) == expected


def test_self_report_is_always_high() -> None:
    assert severity_for_report(IncidentType.self_report, None) == Severity.high
    assert severity_for_report(IncidentType.self_report, _triage(False, False)) == Severity.high


def test_bystander_report_requires_triage() -> None:
    with pytest.raises(ValueError):
        severity_for_report(IncidentType.bystander, None)


def test_validate_triage_accepts_booleans_and_legacy_bleeding_key() -> None:
    answers = validate_triage({"conscious": False, "breathing": True, "bleeding": True})

    assert answers.conscious is False
    assert answers.heavy_bleeding is True


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"conscious": "yes", "breathing": True, "heavy_bleeding": False},
        {"conscious": True, "breathing": 1, "heavy_bleeding": False},
        {"conscious": True, "breathing": True},
    ],
)
def test_validate_triage_rejects_non_boolean_answers(payload) -> None:
    with pytest.raises(ValueError):
        validate_triage(payload)


def test_critical_unconscious_patient_gets_volunteer_and_cardiac_ambulance() -> None:
    triage = _triage(conscious=False, breathing=False)
    plan = generate_action_plan(calculate_severity(triage), triage)

    assert plan.dispatch_volunteer is True
    assert plan.request_blood_donor is False
    assert plan.ambulance_types[0] == AmbulanceType.cardiac
    assert plan.priority == 1
    assert plan.estimated_response_time == 5
    assert plan.specialties == ["emergency_medicine", "cardiology"]


def test_bleeding_high_severity_requests_blood() -> None:
    triage = _triage(heavy_bleeding=True)
    plan = generate_action_plan(Severity.high, triage)

    assert plan.request_blood_donor is True
    assert plan.dispatch_volunteer is False
    assert "trauma" in plan.specialties
    assert plan.ambulance_types == [AmbulanceType.als, AmbulanceType.basic]
    assert plan.priority == 2
    assert plan.estimated_response_time == 8


def test_bleeding_medium_severity_does_not_request_blood() -> None:
    plan = generate_action_plan(Severity.medium, _triage(heavy_bleeding=True))

    assert plan.request_blood_donor is False
    assert plan.ambulance_types == [AmbulanceType.basic, AmbulanceType.als]
    assert plan.estimated_response_time == 12


def test_self_report_plan_has_no_triage_driven_requests() -> None:
    plan = generate_action_plan(Severity.high, None)

    assert plan.dispatch_volunteer is False
    assert plan.request_blood_donor is False
    assert plan.specialties == ["emergency_medicine"]
    assert plan.primary_specialty is None


def test_description_keywords_add_specialties() -> None:
    assert extract_specialties("Severe CHEST pain, possible heart attack") == ["cardiology"]
    assert extract_specialties("Fell and hit his head, leg fracture") == ["neurology", "orthopedics"]
    assert extract_specialties(None) == []

    plan = generate_action_plan(Severity.low, _triage(), "broken bone in arm")
    assert plan.specialties == ["emergency_medicine", "orthopedics"]
    assert plan.primary_specialty == "orthopedics"
    assert plan.priority == 4
