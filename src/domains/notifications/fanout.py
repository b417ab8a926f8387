"""
派单通知扇出

救护车/医院: 分配即生效，通知只是告知。
志愿者/献血者: 向排名内所有候选同时发出限时邀约，先接受者得。
接受处理在事件锁内完成:
1. 邀约不存在 -> NotFoundError
2. 已过期 -> accepted=False, reason=expired（只在接受时检查，无后台清理）
3. 槽位已被占 -> accepted=False, reason=slot_taken
4. 否则预占资源、写入槽位，本邀约置为accepted，同槽位其他待定邀约置为superseded
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional
from uuid import UUID

from src.core.clock import Clock
from src.core.exceptions import NotFoundError
from src.domains.incidents.lifecycle import IncidentLifecycle
from src.domains.incidents.repository import InMemoryIncidentRepository
from src.domains.incidents.schemas import (
    AcceptResult,
    ActorKind,
    ActorRef,
    Incident,
    Severity,
    Slot,
    TimelineEventType,
)
from src.domains.responders.registry import CandidateRegistry
from src.planning.algorithms.base import format_distance, format_eta
from src.planning.algorithms.matching import ScoredCandidate
from .channels import NotificationDispatcher
from .schemas import DispatchOffer, NotificationKind, NotificationMessage, OfferStatus, Recipient

logger = logging.getLogger(__name__)

_OFFER_SLOTS = (Slot.volunteer, Slot.blood_donor)

_ACTOR_KINDS = {
    Slot.ambulance: ActorKind.ambulance,
    Slot.hospital: ActorKind.hospital,
    Slot.volunteer: ActorKind.volunteer,
    Slot.blood_donor: ActorKind.donor,
}


def recipient_for(slot: Slot, candidate) -> Recipient:
    name = getattr(candidate, "full_name", None) or getattr(candidate, "name", None)
    return Recipient(
        kind=_ACTOR_KINDS[slot],
        id=candidate.id,
        name=name or None,
        fcm_token=candidate.fcm_token,
        email=candidate.email,
        phone=getattr(candidate, "phone", None),
    )


class NotificationFanout:
    """邀约签发与接受裁决"""

    def __init__(
        self,
        repository: InMemoryIncidentRepository,
        lifecycle: IncidentLifecycle,
        registry: CandidateRegistry,
        dispatcher: NotificationDispatcher,
        clock: Clock,
        offer_ttl_minutes: Callable[[str], int],
    ) -> None:
        self._repo = repository
        self._lifecycle = lifecycle
        self._registry = registry
        self._dispatcher = dispatcher
        self._clock = clock
        self._offer_ttl_minutes = offer_ttl_minutes
        self._offers: dict[UUID, DispatchOffer] = {}

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def offers_for(self, incident_id: UUID, slot: Optional[Slot] = None) -> list[DispatchOffer]:
        return [
            o for o in self._offers.values()
            if o.incident_id == incident_id and (slot is None or o.slot == slot)
        ]

    def _find_offer(self, incident_id: UUID, slot: Slot, candidate_id: str) -> DispatchOffer:
        for offer in self.offers_for(incident_id, slot):
            if offer.candidate_id == candidate_id:
                return offer
        raise NotFoundError("Offer", f"{incident_id}/{slot.value}/{candidate_id}")

    # ------------------------------------------------------------------
    # 签发
    # ------------------------------------------------------------------

    def offer_ttl(self, severity: Severity) -> timedelta:
        return timedelta(minutes=self._offer_ttl_minutes(severity.value))

    async def issue_offers(
        self,
        incident: Incident,
        slot: Slot,
        ranked: Iterable[ScoredCandidate],
    ) -> list[DispatchOffer]:
        """
        向所有排名候选同时发出邀约

        调用方需持有事件锁；投递失败不影响邀约本身
        """
        if slot not in _OFFER_SLOTS:
            raise ValueError(f"{slot.value} 不使用邀约模式")

        now = self._clock.now()
        expires_at = now + self.offer_ttl(incident.severity)
        offers: list[DispatchOffer] = []
        recipients: list[Recipient] = []
        for scored in ranked:
            offer = DispatchOffer(
                incident_id=incident.id,
                slot=slot,
                candidate_id=scored.candidate_id,
                score=scored.score,
                distance_km=scored.distance_km,
                eta_min=scored.eta_min,
                created_at=now,
                expires_at=expires_at,
            )
            self._offers[offer.id] = offer
            offers.append(offer)
            recipients.append(recipient_for(slot, scored.candidate))

        if not offers:
            return []

        kind = NotificationKind.volunteer_offer if slot == Slot.volunteer else NotificationKind.donor_offer
        await asyncio.gather(*(
            self._dispatcher.notify(recipient, self._offer_message(incident, offer, kind))
            for offer, recipient in zip(offers, recipients)
        ))

        self._lifecycle.add_timeline_event(
            incident,
            TimelineEventType.offers_sent,
            f"{len(offers)} {slot.value} offers sent",
            ActorRef.system(),
        )
        logger.info(f"事件{incident.id}已向{len(offers)}名{slot.value}发出邀约，有效期至{expires_at.isoformat()}")
        return offers

    def _offer_message(self, incident: Incident, offer: DispatchOffer, kind: NotificationKind) -> NotificationMessage:
        if kind == NotificationKind.volunteer_offer:
            title = "Emergency nearby: CPR volunteer needed"
        else:
            title = f"Urgent blood request ({incident.patient.blood_type.value if incident.patient.blood_type else 'unknown'})"
        return NotificationMessage(
            kind=kind,
            title=title,
            body=(
                f"{incident.severity.value.upper()} emergency {format_distance(offer.distance_km)} away, "
                f"ETA {format_eta(offer.eta_min)}. {incident.location.address}"
            ),
            incident_id=incident.id,
            data={
                "offer_id": str(offer.id),
                "slot": offer.slot.value,
                "expires_at": offer.expires_at.isoformat(),
                "latitude": incident.location.latitude,
                "longitude": incident.location.longitude,
            },
        )

    async def notify_assignment(self, incident: Incident, slot: Slot, candidate, eta_min: int) -> None:
        """救护车/医院分配后的告知通知"""
        kind = NotificationKind.ambulance_assigned if slot == Slot.ambulance else NotificationKind.hospital_assigned
        title = "New emergency assignment" if slot == Slot.ambulance else "Incoming emergency patient"
        message = NotificationMessage(
            kind=kind,
            title=title,
            body=f"{incident.severity.value.upper()} emergency at {incident.location.address}, ETA {format_eta(eta_min)}",
            incident_id=incident.id,
            data={
                "severity": incident.severity.value,
                "latitude": incident.location.latitude,
                "longitude": incident.location.longitude,
            },
        )
        await self._dispatcher.notify(recipient_for(slot, candidate), message)

    # ------------------------------------------------------------------
    # 接受/拒绝
    # ------------------------------------------------------------------

    async def accept(self, incident_id: UUID, slot: Slot, candidate_id: str) -> AcceptResult:
        superseded: list[DispatchOffer] = []
        async with self._repo.lock(incident_id):
            incident = await self._repo.get(incident_id)
            if incident is None:
                raise NotFoundError("Incident", str(incident_id))
            if incident.is_terminal:
                return AcceptResult(accepted=False, reason="incident_closed")
            offer = self._find_offer(incident_id, slot, candidate_id)
            now = self._clock.now()

            if offer.status == OfferStatus.accepted:
                return AcceptResult(accepted=True, offer_id=offer.id)
            if offer.status == OfferStatus.superseded:
                return AcceptResult(accepted=False, reason="slot_taken", offer_id=offer.id)
            if offer.status != OfferStatus.pending:
                return AcceptResult(accepted=False, reason=offer.status.value, offer_id=offer.id)

            if offer.is_expired(now):
                offer.status = OfferStatus.expired
                logger.info(f"邀约已过期: {offer.id}, candidate={candidate_id}")
                return AcceptResult(accepted=False, reason="expired", offer_id=offer.id)

            if getattr(incident.assignments, slot.value) is not None:
                offer.status = OfferStatus.superseded
                return AcceptResult(accepted=False, reason="slot_taken", offer_id=offer.id)

            if not await self._registry.reserve(slot.responder_kind, candidate_id):
                offer.status = OfferStatus.declined
                offer.decline_reason = "unavailable"
                offer.responded_at = now
                return AcceptResult(accepted=False, reason="unavailable", offer_id=offer.id)

            self._lifecycle.assign(
                incident,
                slot,
                candidate_id,
                offer.eta_min,
                actor=ActorRef(kind=_ACTOR_KINDS[slot], id=candidate_id),
            )
            offer.status = OfferStatus.accepted
            offer.responded_at = now
            for other in self.offers_for(incident_id, slot):
                if other.id != offer.id and other.status == OfferStatus.pending:
                    other.status = OfferStatus.superseded
                    superseded.append(other)
            await self._repo.save(incident)

        logger.info(f"事件{incident_id}的{slot.value}邀约被{candidate_id}接受，其余{len(superseded)}份作废")
        await self._dispatcher.publish(
            "offer.accepted",
            {"incident_id": str(incident_id), "slot": slot.value, "candidate_id": candidate_id},
            incident_id=incident_id,
        )
        for other in superseded:
            await self._dispatcher.notify(
                Recipient(kind=_ACTOR_KINDS[slot], id=other.candidate_id),
                NotificationMessage(
                    kind=NotificationKind.offer_superseded,
                    title="Request filled",
                    body="Another responder has already accepted this request. Thank you.",
                    incident_id=incident_id,
                    priority="normal",
                ),
            )
        return AcceptResult(accepted=True, offer_id=offer.id)

    async def decline(
        self,
        incident_id: UUID,
        slot: Slot,
        candidate_id: str,
        reason: Optional[str] = None,
    ) -> DispatchOffer:
        async with self._repo.lock(incident_id):
            offer = self._find_offer(incident_id, slot, candidate_id)
            if offer.status == OfferStatus.pending:
                offer.status = OfferStatus.declined
                offer.decline_reason = reason
                offer.responded_at = self._clock.now()
                logger.info(f"邀约被拒绝: {offer.id}, candidate={candidate_id}, reason={reason}")
            return offer

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """将已过期的待定邀约标记为expired，返回数量（用于统计）"""
        now = now or self._clock.now()
        expired = 0
        for offer in self._offers.values():
            if offer.status == OfferStatus.pending and offer.is_expired(now):
                offer.status = OfferStatus.expired
                expired += 1
        return expired

    def withdraw_pending(self, incident_id: UUID) -> int:
        """事件结束时作废其全部待定邀约"""
        withdrawn = 0
        for offer in self.offers_for(incident_id):
            if offer.status == OfferStatus.pending:
                offer.status = OfferStatus.superseded
                withdrawn += 1
        return withdrawn

    def close_incident(self, incident_id: UUID) -> int:
        """事件结束: 作废待定邀约后丢弃该事件的全部邀约，返回作废数量"""
        withdrawn = self.withdraw_pending(incident_id)
        for offer in self.offers_for(incident_id):
            del self._offers[offer.id]
        logger.info(f"事件{incident_id}已结束，作废{withdrawn}份待定邀约")
        return withdrawn


__all__ = ["NotificationFanout", "recipient_for"]
