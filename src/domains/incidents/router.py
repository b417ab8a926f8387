"""
急救事件API路由

接口前缀: /incidents
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from src.core.dependencies import get_incident_service
from src.domains.notifications.schemas import DispatchOffer
from src.domains.responders.schemas import ResponderKind
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
    Severity,
    Slot,
    TimelineEntry,
    TrackingSnapshot,
)
from .service import IncidentService


router = APIRouter(prefix="/incidents", tags=["incidents"])
responders_router = APIRouter(prefix="/responders", tags=["responders"])


@router.post("", response_model=DispatchSummary, status_code=201)
async def create_incident(
    data: IncidentReport,
    service: IncidentService = Depends(get_incident_service),
) -> DispatchSummary:
    """
    创建急救事件（SOS或旁观者上报）

    立即完成分诊、救护车/医院分配，并向志愿者/献血者发出限时邀约。
    找不到资源不会导致失败，见返回中的 *_found 标志与 warnings。
    """
    return await service.create_incident(data)


@router.get("", response_model=IncidentListResponse)
async def list_incidents(
    page: int = Query(1, ge=1, description="页码"),
    page_size: int = Query(20, ge=1, le=100, description="每页数量"),
    status: Optional[IncidentStatus] = Query(None, description="状态筛选"),
    severity: Optional[Severity] = Query(None, description="严重程度筛选"),
    service: IncidentService = Depends(get_incident_service),
) -> IncidentListResponse:
    """分页查询急救事件"""
    return await service.list_incidents(page, page_size, status, severity)


@router.get("/{incident_id}", response_model=Incident)
async def get_incident(
    incident_id: UUID,
    service: IncidentService = Depends(get_incident_service),
) -> Incident:
    return await service.get_incident(incident_id)


@router.post("/{incident_id}/status", response_model=Incident)
async def update_incident_status(
    incident_id: UUID,
    data: IncidentStatusUpdate,
    service: IncidentService = Depends(get_incident_service),
) -> Incident:
    """
    推进事件状态

    非法流转或已结束事件返回409
    """
    return await service.update_incident_status(incident_id, data)


@router.post("/{incident_id}/accept", response_model=AcceptResult)
async def accept_assignment(
    incident_id: UUID,
    data: AssignmentAccept,
    service: IncidentService = Depends(get_incident_service),
) -> AcceptResult:
    """志愿者/献血者接受邀约，先到先得"""
    return await service.accept_assignment(incident_id, data)


@router.post("/{incident_id}/decline", response_model=DispatchOffer)
async def decline_assignment(
    incident_id: UUID,
    data: AssignmentDecline,
    service: IncidentService = Depends(get_incident_service),
) -> DispatchOffer:
    return await service.decline_assignment(incident_id, data)


@router.get("/{incident_id}/offers", response_model=list[DispatchOffer])
async def list_offers(
    incident_id: UUID,
    slot: Optional[Slot] = Query(None, description="槽位筛选: volunteer/blood_donor"),
    service: IncidentService = Depends(get_incident_service),
) -> list[DispatchOffer]:
    return await service.list_offers(incident_id, slot)


@router.post("/{incident_id}/cancel", response_model=Incident)
async def cancel_incident(
    incident_id: UUID,
    data: IncidentCancel,
    service: IncidentService = Depends(get_incident_service),
) -> Incident:
    return await service.cancel_incident(incident_id, data)


@router.post("/{incident_id}/resolve", response_model=Incident)
async def resolve_incident(
    incident_id: UUID,
    data: IncidentResolve,
    service: IncidentService = Depends(get_incident_service),
) -> Incident:
    return await service.resolve_incident(incident_id, data)


@router.get("/{incident_id}/tracking", response_model=TrackingSnapshot)
async def get_tracking_snapshot(
    incident_id: UUID,
    service: IncidentService = Depends(get_incident_service),
) -> TrackingSnapshot:
    """公开追踪页数据"""
    return await service.get_tracking_snapshot(incident_id)


@router.get("/{incident_id}/timeline", response_model=list[TimelineEntry])
async def get_timeline(
    incident_id: UUID,
    service: IncidentService = Depends(get_incident_service),
) -> list[TimelineEntry]:
    return await service.get_timeline(incident_id)


@responders_router.put("/{kind}/{responder_id}/location", response_model=ResponderLocationResponse)
async def update_responder_location(
    kind: ResponderKind,
    responder_id: str,
    data: LocationUpdate,
    service: IncidentService = Depends(get_incident_service),
) -> ResponderLocationResponse:
    """资源上报当前位置（缓存5分钟）"""
    return await service.update_responder_location(kind, responder_id, data)


@responders_router.get("/{kind}/{responder_id}/location", response_model=ResponderLocationResponse)
async def get_responder_location(
    kind: ResponderKind,
    responder_id: str,
    service: IncidentService = Depends(get_incident_service),
) -> ResponderLocationResponse:
    return await service.get_responder_location(kind, responder_id)
