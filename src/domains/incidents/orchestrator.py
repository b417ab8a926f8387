"""
急救派单编排器

create_incident 按顺序执行:
1. 校验上报（坐标、旁观者分诊问卷），同一上报人已有进行中事件则冲突
2. 严重程度与患者信息，生成行动方案
3. 救护车: 半径内评分，原子预占最优者，抢占失败顺延下一名
4. 医院: 半径内有床位且接收急诊者中评分最优（与第3步互不依赖）
5. 志愿者: 方案或上报要求时，向半径内至多N名同时发出邀约
6. 献血者: 方案或上报要求，且已知血型并已分配医院时，向相容献血者发出邀约
7. 本人呼救: 通知紧急联系人，立即记为已通知
8. 实时频道广播 incident.created

任一步骤找不到资源都不会中止创建，只记录告警并在概要中体现。
"""

from __future__ import annotations

import logging
from typing import Optional

from src.core.clock import Clock
from src.core.config import Settings
from src.core.exceptions import ConflictError, ValidationError
from src.domains.notifications.channels import NotificationDispatcher
from src.domains.notifications.fanout import NotificationFanout
from src.domains.notifications.schemas import NotificationKind, NotificationMessage, Recipient
from src.domains.responders.registry import CandidateRegistry
from src.domains.responders.schemas import BedCategory, ReporterProfile, ResponderKind
from src.planning.algorithms.matching import (
    compatible_donor_types,
    rank_ambulances,
    rank_donors,
    rank_volunteers,
    select_best_hospital,
)
from src.planning.algorithms.triage import generate_action_plan, severity_for_report, validate_triage
from .lifecycle import IncidentLifecycle
from .repository import InMemoryIncidentRepository
from .schemas import (
    ActorKind,
    ActorRef,
    DispatchSummary,
    Incident,
    IncidentReport,
    IncidentType,
    PatientInfo,
    Severity,
    Slot,
    TimelineEventType,
    TriageAnswers,
)

logger = logging.getLogger(__name__)


class DispatchOrchestrator:
    """派单编排器"""

    def __init__(
        self,
        repository: InMemoryIncidentRepository,
        lifecycle: IncidentLifecycle,
        registry: CandidateRegistry,
        fanout: NotificationFanout,
        dispatcher: NotificationDispatcher,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._repo = repository
        self._lifecycle = lifecycle
        self._registry = registry
        self._fanout = fanout
        self._dispatcher = dispatcher
        self._clock = clock
        self._settings = settings

    async def create_incident(self, report: IncidentReport) -> DispatchSummary:
        triage = self._validate_report(report)

        async with self._repo.reporter_lock(report.reported_by):
            active = await self._repo.find_active_by_reporter(report.reported_by)
            if active is not None:
                raise ConflictError(
                    error_code="INCIDENT_ALREADY_ACTIVE",
                    message=f"上报人已有进行中的急救事件: {active.id}",
                )

            severity = severity_for_report(report.type, triage)
            profile: Optional[ReporterProfile] = None
            if report.type == IncidentType.self_report:
                profile = await self._registry.get_reporter(report.reported_by)
            patient = self._build_patient(report, profile)
            plan = generate_action_plan(severity, triage, report.victim_description)

            now = self._clock.now()
            incident = Incident(
                type=report.type,
                reported_by=report.reported_by,
                patient=patient,
                location=report.location,
                severity=severity,
                required_specialty=report.required_specialty or plan.primary_specialty,
                sos_triggered_at=now,
                updated_at=now,
            )
            self._lifecycle.add_timeline_event(
                incident,
                TimelineEventType.sos_triggered,
                "SOS triggered" if report.type == IncidentType.self_report else "Bystander report received",
                ActorRef(kind=ActorKind.user, id=report.reported_by),
            )
            if triage is not None:
                self._lifecycle.record_triage(incident, triage)
            await self._repo.save(incident)
        logger.info(
            f"急救事件已创建: {incident.id}, type={report.type.value}, severity={severity.value}, "
            f"priority={plan.priority}"
        )

        summary = DispatchSummary(
            incident=incident,
            tracking_link=f"{self._settings.client_url.rstrip('/')}/track/{incident.id}",
        )
        assigned_ambulance = None
        assigned_hospital = None

        async with self._repo.lock(incident.id):
            assigned_ambulance = await self._dispatch_ambulance(incident, summary)
            assigned_hospital = await self._assign_hospital(incident, summary)
            if plan.dispatch_volunteer or report.request_volunteer:
                summary.volunteers_notified = await self._offer_volunteers(incident, summary)
            if plan.request_blood_donor or report.request_blood:
                summary.donors_notified = await self._offer_donors(incident, summary)
            contacts = []
            if profile is not None and profile.emergency_contacts:
                contacts = list(profile.emergency_contacts)
                self._lifecycle.notify_contacts(incident, contacts)
                summary.contacts_notified = len(contacts)
            await self._repo.save(incident)

        if assigned_ambulance is not None:
            await self._fanout.notify_assignment(
                incident, Slot.ambulance, assigned_ambulance, incident.estimated_times.ambulance_eta or 0,
            )
        if assigned_hospital is not None:
            await self._fanout.notify_assignment(
                incident, Slot.hospital, assigned_hospital, incident.estimated_times.hospital_eta or 0,
            )
        if contacts:
            await self._notify_contacts(incident, profile, contacts)

        await self._dispatcher.publish(
            "incident.created",
            {
                "incident_id": str(incident.id),
                "severity": severity.value,
                "status": incident.status.value,
                "location": incident.location.model_dump(),
                "action_plan": plan.to_dict(),
            },
            incident_id=incident.id,
        )
        if severity == Severity.critical:
            await self._dispatcher.publish(
                "incident.critical",
                {"incident_id": str(incident.id), "address": incident.location.address},
                channel="alerts",
            )

        summary.incident = incident
        return summary

    # ------------------------------------------------------------------
    # 校验与患者信息
    # ------------------------------------------------------------------

    def _validate_report(self, report: IncidentReport) -> Optional[TriageAnswers]:
        if report.type != IncidentType.bystander:
            return None
        try:
            return validate_triage(report.triage)
        except ValueError as e:
            raise ValidationError(str(e), {"triage": report.triage}) from e

    def _build_patient(self, report: IncidentReport, profile: Optional[ReporterProfile]) -> PatientInfo:
        if report.type == IncidentType.bystander or profile is None:
            return PatientInfo(
                name="Unknown victim",
                blood_type=report.patient_blood_type,
                user_id=report.reported_by if report.type == IncidentType.self_report else None,
            )
        return PatientInfo(
            user_id=profile.id,
            name=profile.full_name or "Unknown",
            age=profile.age_on(self._clock.now().date()),
            gender=profile.gender or "Unknown",
            blood_type=profile.blood_type or report.patient_blood_type,
            known_conditions=list(profile.chronic_conditions),
            known_medications=list(profile.current_medications),
        )

    # ------------------------------------------------------------------
    # 各资源步骤（均在事件锁内调用）
    # ------------------------------------------------------------------

    async def _dispatch_ambulance(self, incident: Incident, summary: DispatchSummary):
        s = self._settings
        origin = incident.location.to_geo()
        candidates = await self._registry.query_ambulances(origin, s.max_ambulance_radius_km)
        ranked = rank_ambulances(origin, candidates, incident.severity, {
            "max_radius_km": s.max_ambulance_radius_km,
            "speed_kmh": s.vehicle_speed_kmh,
        })
        for scored in ranked:
            if not await self._registry.reserve(ResponderKind.ambulance, scored.candidate_id):
                logger.info(f"救护车已被其他事件占用，尝试下一辆: {scored.candidate_id}")
                continue
            self._lifecycle.assign_ambulance(incident, scored.candidate_id, scored.eta_min)
            summary.ambulance_found = True
            summary.ambulance_eta = scored.eta_min
            return scored.candidate

        logger.warning(f"事件{incident.id}: {s.max_ambulance_radius_km}km内无可用救护车")
        summary.warnings.append("no ambulance found")
        return None

    async def _assign_hospital(self, incident: Incident, summary: DispatchSummary):
        s = self._settings
        origin = incident.location.to_geo()
        candidates = await self._registry.query_hospitals(origin, s.max_hospital_radius_km)
        best = select_best_hospital(
            origin,
            candidates,
            incident.severity,
            incident.required_specialty,
            {
                "max_radius_km": s.max_hospital_radius_km,
                "speed_kmh": s.hospital_transport_speed_kmh,
                "bed_category": BedCategory(s.required_bed_category),
            },
        )
        if best is None:
            logger.warning(f"事件{incident.id}: {s.max_hospital_radius_km}km内无可接收的医院")
            summary.warnings.append("no hospital found")
            return None

        self._lifecycle.assign_hospital(incident, best.candidate_id, best.eta_min, best.candidate.name)
        summary.hospital_found = True
        summary.hospital_name = best.candidate.name
        return best.candidate

    async def _offer_volunteers(self, incident: Incident, summary: DispatchSummary) -> int:
        s = self._settings
        origin = incident.location.to_geo()
        candidates = await self._registry.query_volunteers(origin, s.max_volunteer_radius_km)
        ranked = rank_volunteers(origin, candidates, self._clock.now(), {
            "max_radius_km": s.max_volunteer_radius_km,
            "limit": s.volunteer_alert_limit,
            "speed_kmh": s.volunteer_speed_kmh,
        })
        if not ranked:
            logger.warning(f"事件{incident.id}: {s.max_volunteer_radius_km}km内无合格志愿者")
            summary.warnings.append("no volunteer found")
            return 0
        offers = await self._fanout.issue_offers(incident, Slot.volunteer, ranked)
        return len(offers)

    async def _offer_donors(self, incident: Incident, summary: DispatchSummary) -> int:
        s = self._settings
        blood_type = incident.patient.blood_type
        if blood_type is None:
            logger.warning(f"事件{incident.id}: 患者血型未知，跳过献血者征集")
            summary.warnings.append("blood type unknown")
            return 0
        if incident.assignments.hospital is None:
            logger.warning(f"事件{incident.id}: 未分配医院，跳过献血者征集")
            summary.warnings.append("no hospital for blood delivery")
            return 0

        origin = incident.location.to_geo()
        candidates = await self._registry.query_donors(
            origin, s.max_donor_radius_km, compatible_donor_types(blood_type),
        )
        ranked = rank_donors(origin, candidates, blood_type, self._clock.now(), {
            "max_radius_km": s.max_donor_radius_km,
            "limit": s.donor_alert_limit,
            "speed_kmh": s.donor_speed_kmh,
        })
        if not ranked:
            logger.warning(f"事件{incident.id}: {s.max_donor_radius_km}km内无{blood_type.value}相容献血者")
            summary.warnings.append("no donor found")
            return 0
        self._lifecycle.mark_blood_required(incident, s.default_blood_units)
        offers = await self._fanout.issue_offers(incident, Slot.blood_donor, ranked)
        return len(offers)

    async def _notify_contacts(self, incident: Incident, profile: ReporterProfile, contacts) -> None:
        """投递结果不回写，联系人在事件上已记为已通知"""
        name = profile.full_name or "Your contact"
        message = NotificationMessage(
            kind=NotificationKind.contact_alert,
            title=f"Emergency alert: {name}",
            body=(
                f"{name} triggered an SOS at {incident.location.address}. "
                f"Track: {self._settings.client_url.rstrip('/')}/track/{incident.id}"
            ),
            incident_id=incident.id,
        )
        await self._dispatcher.notify_many(
            [Recipient(kind=ActorKind.user, name=c.name, email=c.email, phone=c.phone) for c in contacts],
            message,
        )


__all__ = ["DispatchOrchestrator"]
