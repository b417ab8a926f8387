"""志愿者/献血者邀约: 先接受者得、过期、拒绝与作废"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.clock import FrozenClock
from src.core.config import Settings
from src.core.exceptions import NotFoundError
from src.domains.incidents.lifecycle import IncidentLifecycle
from src.domains.incidents.orchestrator import DispatchOrchestrator
from src.domains.incidents.repository import InMemoryIncidentRepository
from src.domains.incidents.schemas import ActorKind, ActorRef, IncidentReport, IncidentType, Location, Slot
from src.domains.notifications.channels import NotificationDispatcher
from src.domains.notifications.fanout import NotificationFanout
from src.domains.notifications.schemas import DeliveryOutcome, NotificationKind, OfferStatus
from src.domains.responders.registry import InMemoryCandidateRegistry
from src.domains.responders.schemas import (
    AvailabilityStatus,
    Certification,
    GeoPoint,
    ResponderKind,
    VerificationStatus,
    VolunteerSnapshot,
)

LAT, LNG = 12.9716, 77.5946
KM_PER_DEGREE = 111.1949
VOLUNTEERS = ("vol-a", "vol-b", "vol-c")


class _RecordingChannel:
    name = "recording"

    def __init__(self) -> None:
        self.sent = []

    async def deliver(self, recipient, message) -> DeliveryOutcome:
        self.sent.append((recipient, message))
        return DeliveryOutcome(channel=self.name, recipient=recipient.label, delivered=True)


def _volunteer(id: str, km: float, clock: FrozenClock) -> VolunteerSnapshot:
    return VolunteerSnapshot(
        id=id,
        verification_status=VerificationStatus.verified,
        certification=Certification(is_verified=True, expiry_date=clock.now() + timedelta(days=90)),
        current_location=GeoPoint(latitude=LAT + km / KM_PER_DEGREE, longitude=LNG),
    )


async def _critical_incident_with_offers() -> SimpleNamespace:
    """创建一个critical事件（不呼吸不清醒），向三名志愿者发出邀约"""
    clock = FrozenClock()
    settings = Settings()
    registry = InMemoryCandidateRegistry()
    for i, vid in enumerate(VOLUNTEERS, start=1):
        registry.add(_volunteer(vid, i, clock))
    channel = _RecordingChannel()
    dispatcher = NotificationDispatcher([channel])
    repo = InMemoryIncidentRepository()
    lifecycle = IncidentLifecycle(clock)
    fanout = NotificationFanout(repo, lifecycle, registry, dispatcher, clock, settings.offer_ttl_minutes)
    orchestrator = DispatchOrchestrator(repo, lifecycle, registry, fanout, dispatcher, clock, settings)

    summary = await orchestrator.create_incident(IncidentReport(
        type=IncidentType.bystander,
        reported_by="passerby-7",
        location=Location(latitude=LAT, longitude=LNG, address="Cubbon Park"),
        triage={"conscious": False, "breathing": False, "heavy_bleeding": False},
    ))
    return SimpleNamespace(
        clock=clock, registry=registry, channel=channel, repo=repo, fanout=fanout, lifecycle=lifecycle,
        incident_id=summary.incident.id,
    )


def test_offers_are_issued_to_every_ranked_volunteer() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        offers = env.fanout.offers_for(env.incident_id, Slot.volunteer)
        assert sorted(o.candidate_id for o in offers) == list(VOLUNTEERS)
        # critical 邀约有效期3分钟
        assert all(o.expires_at - o.created_at == timedelta(minutes=3) for o in offers)
        offer_messages = [m for _, m in env.channel.sent if m.kind == NotificationKind.volunteer_offer]
        assert len(offer_messages) == 3
        assert all(m.data["slot"] == "volunteer" for m in offer_messages)

    asyncio.run(scenario())


def test_concurrent_accepts_have_exactly_one_winner() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        results = await asyncio.gather(*(
            env.fanout.accept(env.incident_id, Slot.volunteer, vid) for vid in VOLUNTEERS
        ))

        winners = [vid for vid, r in zip(VOLUNTEERS, results) if r.accepted]
        assert len(winners) == 1
        assert all(r.reason == "slot_taken" for r in results if not r.accepted)

        incident = await env.repo.get(env.incident_id)
        assert incident.assignments.volunteer == winners[0]
        assert env.registry.status_of(ResponderKind.volunteer, winners[0]) == AvailabilityStatus.busy
        losers = [vid for vid in VOLUNTEERS if vid != winners[0]]
        for vid in losers:
            assert env.registry.status_of(ResponderKind.volunteer, vid) == AvailabilityStatus.available

        statuses = {o.candidate_id: o.status for o in env.fanout.offers_for(env.incident_id)}
        assert statuses[winners[0]] == OfferStatus.accepted
        assert all(statuses[vid] == OfferStatus.superseded for vid in losers)

        superseded_notices = [
            r.id for r, m in env.channel.sent if m.kind == NotificationKind.offer_superseded
        ]
        assert sorted(superseded_notices) == sorted(losers)

    asyncio.run(scenario())


def test_accepting_twice_is_idempotent() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        first = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-a")
        second = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-a")
        assert first.accepted and second.accepted
        assert first.offer_id == second.offer_id

    asyncio.run(scenario())


def test_accept_after_ttl_is_rejected_as_expired() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        env.clock.advance(minutes=4)

        result = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-a")

        assert result.accepted is False
        assert result.reason == "expired"
        incident = await env.repo.get(env.incident_id)
        assert incident.assignments.volunteer is None
        assert env.registry.status_of(ResponderKind.volunteer, "vol-a") == AvailabilityStatus.available

    asyncio.run(scenario())


def test_offer_expires_exactly_at_deadline() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        env.clock.advance(minutes=3)
        result = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-b")
        assert result.reason == "expired"

    asyncio.run(scenario())


def test_unknown_offer_or_incident_raises_not_found() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        with pytest.raises(NotFoundError):
            await env.fanout.accept(env.incident_id, Slot.volunteer, "stranger")
        with pytest.raises(NotFoundError):
            await env.fanout.accept(env.incident_id, Slot.blood_donor, "vol-a")
        with pytest.raises(NotFoundError):
            await env.fanout.accept(uuid4(), Slot.volunteer, "vol-a")

    asyncio.run(scenario())


def test_declined_offer_cannot_be_accepted_later() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        offer = await env.fanout.decline(env.incident_id, Slot.volunteer, "vol-b", reason="too far")
        assert offer.status == OfferStatus.declined
        assert offer.decline_reason == "too far"
        assert offer.responded_at == env.clock.now()

        result = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-b")
        assert result.accepted is False
        assert result.reason == "declined"

        # 其他候选不受影响
        other = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-c")
        assert other.accepted is True

    asyncio.run(scenario())


def test_candidate_busy_elsewhere_cannot_accept() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        assert await env.registry.reserve(ResponderKind.volunteer, "vol-a") is True

        result = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-a")

        assert result.accepted is False
        assert result.reason == "unavailable"
        incident = await env.repo.get(env.incident_id)
        assert incident.assignments.volunteer is None

    asyncio.run(scenario())


def test_expire_stale_and_withdraw_pending_count_only_pending_offers() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        await env.fanout.decline(env.incident_id, Slot.volunteer, "vol-a")

        assert env.fanout.expire_stale() == 0
        env.clock.advance(minutes=5)
        assert env.fanout.expire_stale() == 2
        assert env.fanout.withdraw_pending(env.incident_id) == 0

    asyncio.run(scenario())


def test_withdraw_pending_supersedes_open_offers() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        assert env.fanout.withdraw_pending(env.incident_id) == 3
        statuses = {o.status for o in env.fanout.offers_for(env.incident_id)}
        assert statuses == {OfferStatus.superseded}

    asyncio.run(scenario())


def test_closing_incident_drops_its_offers() -> None:
    async def scenario():
        env = await _critical_incident_with_offers()
        await env.fanout.decline(env.incident_id, Slot.volunteer, "vol-a")

        async with env.repo.lock(env.incident_id):
            incident = await env.repo.get(env.incident_id)
            env.lifecycle.cancel(incident, "false alarm", ActorRef(kind=ActorKind.admin, id="admin-1"))
            assert env.fanout.close_incident(env.incident_id) == 2

        assert env.fanout.offers_for(env.incident_id) == []
        assert env.repo.held_locks == 0

        late = await env.fanout.accept(env.incident_id, Slot.volunteer, "vol-b")
        assert late.accepted is False
        assert late.reason == "incident_closed"
        assert env.registry.status_of(ResponderKind.volunteer, "vol-b") == AvailabilityStatus.available

    asyncio.run(scenario())
