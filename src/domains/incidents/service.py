"""
急救事件业务服务层

职责: 加锁、调用生命周期与编排器、资源释放、实时广播
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from src.core.exceptions import NotFoundError, ValidationError
from src.domains.notifications.channels import NotificationDispatcher
from src.domains.notifications.fanout import NotificationFanout
from src.domains.notifications.schemas import DispatchOffer
from src.domains.responders.registry import CandidateRegistry
from src.domains.responders.schemas import ResponderKind
from src.domains.tracking.location_cache import LocationCache
from .lifecycle import IncidentLifecycle
from .orchestrator import DispatchOrchestrator
from .repository import InMemoryIncidentRepository
from .schemas import (
    AcceptResult,
    AssignmentAccept,
    AssignmentDecline,
    DispatchSummary,
    Incident,
    IncidentCancel,
    IncidentListResponse,
    IncidentReport,
    IncidentResolve,
    IncidentStatus,
    IncidentStatusUpdate,
    LocationUpdate,
    ResponderLocationResponse,
    ResponderPosition,
    Severity,
    Slot,
    TimelineEntry,
    TrackingSnapshot,
)

logger = logging.getLogger(__name__)

# 事件结束时释放的已预占资源
_RELEASABLE_SLOTS = (Slot.ambulance, Slot.volunteer, Slot.blood_donor)


class IncidentService:
    """急救事件业务服务"""

    def __init__(
        self,
        repository: InMemoryIncidentRepository,
        lifecycle: IncidentLifecycle,
        orchestrator: DispatchOrchestrator,
        fanout: NotificationFanout,
        dispatcher: NotificationDispatcher,
        registry: CandidateRegistry,
        location_cache: LocationCache,
    ) -> None:
        self._repo = repository
        self._lifecycle = lifecycle
        self._orchestrator = orchestrator
        self._fanout = fanout
        self._dispatcher = dispatcher
        self._registry = registry
        self._locations = location_cache

    async def _get_or_404(self, incident_id: UUID) -> Incident:
        incident = await self._repo.get(incident_id)
        if incident is None:
            raise NotFoundError("Incident", str(incident_id))
        return incident

    async def create_incident(self, report: IncidentReport) -> DispatchSummary:
        return await self._orchestrator.create_incident(report)

    async def get_incident(self, incident_id: UUID) -> Incident:
        return await self._get_or_404(incident_id)

    async def list_incidents(
        self,
        page: int = 1,
        page_size: int = 20,
        status: Optional[IncidentStatus] = None,
        severity: Optional[Severity] = None,
    ) -> IncidentListResponse:
        items, total = await self._repo.list(page, page_size, status, severity)
        return IncidentListResponse(items=items, total=total, page=page, page_size=page_size)

    async def update_incident_status(self, incident_id: UUID, data: IncidentStatusUpdate) -> Incident:
        """
        推进事件状态

        业务规则:
        - 按转移表校验，终态事件拒绝
        - 到达类状态记录响应时长
        """
        async with self._repo.lock(incident_id):
            incident = await self._get_or_404(incident_id)
            self._lifecycle.update_status(incident, data.status, data.actor)
            await self._repo.save(incident)

        await self._dispatcher.publish(
            "incident.status_updated",
            {"incident_id": str(incident_id), "status": incident.status.value},
            incident_id=incident_id,
        )
        return incident

    async def accept_assignment(self, incident_id: UUID, data: AssignmentAccept) -> AcceptResult:
        self._ensure_offer_slot(data.slot)
        return await self._fanout.accept(incident_id, data.slot, data.candidate_id)

    async def decline_assignment(self, incident_id: UUID, data: AssignmentDecline) -> DispatchOffer:
        self._ensure_offer_slot(data.slot)
        return await self._fanout.decline(incident_id, data.slot, data.candidate_id, data.reason)

    async def list_offers(self, incident_id: UUID, slot: Optional[Slot] = None) -> list[DispatchOffer]:
        await self._get_or_404(incident_id)
        return self._fanout.offers_for(incident_id, slot)

    async def cancel_incident(self, incident_id: UUID, data: IncidentCancel) -> Incident:
        async with self._repo.lock(incident_id):
            incident = await self._get_or_404(incident_id)
            self._lifecycle.cancel(incident, data.reason, data.actor)
            self._fanout.close_incident(incident_id)
            await self._release_responders(incident)
            await self._repo.save(incident)

        await self._dispatcher.publish(
            "incident.cancelled",
            {"incident_id": str(incident_id), "reason": data.reason},
            incident_id=incident_id,
        )
        return incident

    async def resolve_incident(self, incident_id: UUID, data: IncidentResolve) -> Incident:
        async with self._repo.lock(incident_id):
            incident = await self._get_or_404(incident_id)
            self._lifecycle.resolve(incident, data.outcome, data.actor)
            self._fanout.close_incident(incident_id)
            await self._release_responders(incident)
            await self._repo.save(incident)

        await self._dispatcher.publish(
            "incident.resolved",
            {"incident_id": str(incident_id), "total_seconds": incident.response_times.total},
            incident_id=incident_id,
        )
        return incident

    async def get_tracking_snapshot(self, incident_id: UUID) -> TrackingSnapshot:
        incident = await self._get_or_404(incident_id)
        snapshot = self._lifecycle.tracking_snapshot(incident)
        if incident.assignments.ambulance:
            snapshot.ambulance_location = await self._last_position(ResponderKind.ambulance, incident.assignments.ambulance)
        if incident.assignments.volunteer:
            snapshot.volunteer_location = await self._last_position(ResponderKind.volunteer, incident.assignments.volunteer)
        return snapshot

    async def _last_position(self, kind: ResponderKind, responder_id: str) -> Optional[ResponderPosition]:
        cached = await self._locations.get(kind, responder_id)
        if cached is None:
            return None
        return ResponderPosition.model_validate(cached.model_dump())

    async def get_timeline(self, incident_id: UUID) -> list[TimelineEntry]:
        incident = await self._get_or_404(incident_id)
        return list(incident.timeline)

    async def update_responder_location(
        self,
        kind: ResponderKind,
        responder_id: str,
        data: LocationUpdate,
    ) -> ResponderLocationResponse:
        known = await self._registry.update_location(kind, responder_id, data.latitude, data.longitude)
        if not known:
            raise NotFoundError(kind.value.capitalize(), responder_id)
        cached = await self._locations.set(
            kind, responder_id, data.latitude, data.longitude, data.heading, data.speed_kmh,
        )
        await self._dispatcher.publish(
            "location.updated",
            {
                "kind": kind.value,
                "responder_id": responder_id,
                "latitude": data.latitude,
                "longitude": data.longitude,
            },
            channel="tracking",
        )
        return ResponderLocationResponse(
            kind=kind,
            responder_id=responder_id,
            latitude=cached.latitude,
            longitude=cached.longitude,
            updated_at=cached.updated_at,
            known=True,
        )

    async def get_responder_location(self, kind: ResponderKind, responder_id: str) -> ResponderLocationResponse:
        """最后已知位置，缓存过期返回 known=False"""
        cached = await self._locations.get(kind, responder_id)
        if cached is None:
            return ResponderLocationResponse(kind=kind, responder_id=responder_id)
        return ResponderLocationResponse(
            kind=kind,
            responder_id=responder_id,
            latitude=cached.latitude,
            longitude=cached.longitude,
            updated_at=cached.updated_at,
            known=True,
        )

    def _ensure_offer_slot(self, slot: Slot) -> None:
        if slot not in (Slot.volunteer, Slot.blood_donor):
            raise ValidationError(f"{slot.value} 由系统直接分配，不支持接单操作", {"slot": slot.value})

    async def _release_responders(self, incident: Incident) -> None:
        for slot in _RELEASABLE_SLOTS:
            responder_id = getattr(incident.assignments, slot.value)
            if responder_id is not None:
                await self._registry.release(slot.responder_kind, responder_id)
