"""
急救事件生命周期

状态流转按显式转移表校验；终态(resolved/cancelled)事件拒绝一切修改。
槽位分配是比较并设置: 仅当槽位为空时写入，槽位已占用时抛出 InvalidStateError。
救护车与志愿者两条轨道可交错推进，但每条轨道内部必须按顺序前进且不可回退。
本模块只修改传入的 Incident 对象，加锁与持久化由调用方负责。
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from src.core.clock import Clock
from src.core.exceptions import InvalidStateError, ValidationError
from src.domains.responders.schemas import EmergencyContact
from .schemas import (
    ActorRef,
    Cancellation,
    ContactNotification,
    Incident,
    IncidentOutcome,
    IncidentStatus,
    Slot,
    TimelineEntry,
    TimelineEventType,
    TrackingSnapshot,
    TriageAnswers,
)

logger = logging.getLogger(__name__)

_S = IncidentStatus

TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    _S.pending: frozenset({
        _S.ambulance_dispatched, _S.volunteer_dispatched, _S.volunteer_arrived, _S.cancelled, _S.resolved,
    }),
    _S.volunteer_dispatched: frozenset({
        _S.ambulance_dispatched, _S.ambulance_arrived, _S.volunteer_arrived, _S.patient_picked_up,
        _S.cancelled, _S.resolved,
    }),
    _S.ambulance_dispatched: frozenset({
        _S.ambulance_arrived, _S.volunteer_dispatched, _S.volunteer_arrived, _S.cancelled, _S.resolved,
    }),
    _S.volunteer_arrived: frozenset({
        _S.ambulance_dispatched, _S.ambulance_arrived, _S.patient_picked_up, _S.cancelled, _S.resolved,
    }),
    _S.ambulance_arrived: frozenset({
        _S.patient_picked_up, _S.volunteer_dispatched, _S.volunteer_arrived, _S.cancelled, _S.resolved,
    }),
    _S.patient_picked_up: frozenset({_S.en_route_hospital, _S.cancelled, _S.resolved}),
    _S.en_route_hospital: frozenset({_S.reached_hospital, _S.cancelled, _S.resolved}),
    _S.reached_hospital: frozenset({_S.resolved, _S.cancelled}),
    _S.resolved: frozenset(),
    _S.cancelled: frozenset(),
}

# 两条响应轨道，各自内部有序
TRACKS: tuple[tuple[IncidentStatus, ...], ...] = (
    (_S.ambulance_dispatched, _S.ambulance_arrived, _S.patient_picked_up, _S.en_route_hospital, _S.reached_hospital),
    (_S.volunteer_dispatched, _S.volunteer_arrived),
)

STATUS_DESCRIPTIONS: dict[IncidentStatus, str] = {
    _S.ambulance_dispatched: "Ambulance dispatched",
    _S.volunteer_dispatched: "Volunteer dispatched",
    _S.ambulance_arrived: "Ambulance arrived at location",
    _S.volunteer_arrived: "Volunteer arrived at location",
    _S.patient_picked_up: "Patient picked up by ambulance",
    _S.en_route_hospital: "En route to hospital",
    _S.reached_hospital: "Reached hospital",
}

STATUS_EVENTS: dict[IncidentStatus, TimelineEventType] = {
    _S.ambulance_dispatched: TimelineEventType.ambulance_dispatched,
    _S.volunteer_dispatched: TimelineEventType.volunteer_dispatched,
    _S.ambulance_arrived: TimelineEventType.ambulance_arrived,
    _S.volunteer_arrived: TimelineEventType.volunteer_arrived,
    _S.patient_picked_up: TimelineEventType.patient_picked_up,
    _S.en_route_hospital: TimelineEventType.en_route_hospital,
    _S.reached_hospital: TimelineEventType.reached_hospital,
}


def can_transition(current: IncidentStatus, target: IncidentStatus) -> bool:
    return target in TRANSITIONS[current]


class IncidentLifecycle:
    """事件状态机"""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _ensure_active(self, incident: Incident) -> None:
        if incident.is_terminal:
            raise InvalidStateError(
                f"事件已结束，不允许修改: {incident.id}",
                current_status=incident.status.value,
            )

    def _transition(self, incident: Incident, target: IncidentStatus) -> None:
        if not can_transition(incident.status, target):
            raise InvalidStateError(
                f"不允许的状态流转: {incident.status.value} -> {target.value}",
                current_status=incident.status.value,
            )
        incident.status = target

    def _check_track_order(self, incident: Incident, target: IncidentStatus) -> None:
        """轨道内必须先经过前一步，且不能回到已到达过的步骤"""
        track = next((t for t in TRACKS if target in t), None)
        if track is None:
            return
        reached = {entry.event for entry in incident.timeline}
        index = track.index(target)
        if index > 0 and STATUS_EVENTS[track[index - 1]] not in reached:
            raise InvalidStateError(
                f"尚未到达前一步骤 {track[index - 1].value}，不能进入 {target.value}",
                current_status=incident.status.value,
            )
        if any(STATUS_EVENTS[step] in reached for step in track[index:]):
            raise InvalidStateError(
                f"{target.value} 已经到达过，不允许回退",
                current_status=incident.status.value,
            )

    def _elapsed_seconds(self, incident: Incident) -> float:
        return (self._clock.now() - incident.sos_triggered_at).total_seconds()

    def _claim_slot(self, incident: Incident, slot: Slot, candidate_id: str) -> None:
        current = getattr(incident.assignments, slot.value)
        if current is not None:
            raise InvalidStateError(
                f"{slot.value} 槽位已分配: {current}",
                current_status=incident.status.value,
            )
        setattr(incident.assignments, slot.value, candidate_id)

    def _touch(self, incident: Incident) -> None:
        incident.updated_at = self._clock.now()

    # ------------------------------------------------------------------
    # 时间线
    # ------------------------------------------------------------------

    def add_timeline_event(
        self,
        incident: Incident,
        event: TimelineEventType,
        description: str = "",
        actor: Optional[ActorRef] = None,
    ) -> TimelineEntry:
        entry = TimelineEntry(
            event=event,
            description=description,
            timestamp=self._clock.now(),
            actor=actor,
        )
        incident.timeline.append(entry)
        self._touch(incident)
        return entry

    def record_triage(self, incident: Incident, triage: TriageAnswers) -> None:
        self._ensure_active(incident)
        incident.triage = triage
        self.add_timeline_event(
            incident,
            TimelineEventType.triage_completed,
            f"Triage completed: severity {incident.severity.value}",
        )

    # ------------------------------------------------------------------
    # 槽位分配
    # ------------------------------------------------------------------

    def assign_ambulance(
        self,
        incident: Incident,
        ambulance_id: str,
        eta_min: int,
        actor: Optional[ActorRef] = None,
    ) -> None:
        self._ensure_active(incident)
        if not can_transition(incident.status, IncidentStatus.ambulance_dispatched):
            raise InvalidStateError(
                f"当前状态不允许派遣救护车: {incident.status.value}",
                current_status=incident.status.value,
            )
        self._claim_slot(incident, Slot.ambulance, ambulance_id)
        incident.status = IncidentStatus.ambulance_dispatched
        incident.estimated_times.ambulance_eta = eta_min
        incident.response_times.ambulance_dispatch = self._elapsed_seconds(incident)
        self.add_timeline_event(
            incident,
            TimelineEventType.ambulance_dispatched,
            f"Ambulance dispatched, ETA {eta_min} min",
            actor or ActorRef.system(),
        )
        logger.info(f"事件{incident.id}已派遣救护车: {ambulance_id}, ETA={eta_min}min")

    def assign_hospital(
        self,
        incident: Incident,
        hospital_id: str,
        eta_min: int,
        hospital_name: Optional[str] = None,
    ) -> None:
        self._ensure_active(incident)
        self._claim_slot(incident, Slot.hospital, hospital_id)
        incident.estimated_times.hospital_eta = eta_min
        self.add_timeline_event(
            incident,
            TimelineEventType.hospital_assigned,
            f"Hospital assigned: {hospital_name or hospital_id}",
            ActorRef.system(),
        )
        logger.info(f"事件{incident.id}已分配医院: {hospital_id}")

    def assign_volunteer(
        self,
        incident: Incident,
        volunteer_id: str,
        eta_min: int,
        actor: Optional[ActorRef] = None,
    ) -> None:
        self._ensure_active(incident)
        self._claim_slot(incident, Slot.volunteer, volunteer_id)
        incident.estimated_times.volunteer_eta = eta_min
        self.add_timeline_event(
            incident,
            TimelineEventType.volunteer_dispatched,
            f"Volunteer accepted, ETA {eta_min} min",
            actor,
        )
        logger.info(f"事件{incident.id}志愿者已接单: {volunteer_id}")

    def assign_blood_donor(
        self,
        incident: Incident,
        donor_id: str,
        units: int,
        eta_min: int,
        actor: Optional[ActorRef] = None,
    ) -> None:
        self._ensure_active(incident)
        self._claim_slot(incident, Slot.blood_donor, donor_id)
        incident.blood_required = True
        incident.blood_units = units
        incident.estimated_times.donor_eta = eta_min
        self.add_timeline_event(
            incident,
            TimelineEventType.donor_requested,
            f"Blood donor accepted, {units} units",
            actor,
        )
        logger.info(f"事件{incident.id}献血者已接单: {donor_id}")

    def assign(
        self,
        incident: Incident,
        slot: Slot,
        candidate_id: str,
        eta_min: int,
        actor: Optional[ActorRef] = None,
        blood_units: Optional[int] = None,
    ) -> None:
        if slot == Slot.ambulance:
            self.assign_ambulance(incident, candidate_id, eta_min, actor)
        elif slot == Slot.hospital:
            self.assign_hospital(incident, candidate_id, eta_min)
        elif slot == Slot.volunteer:
            self.assign_volunteer(incident, candidate_id, eta_min, actor)
        else:
            units = blood_units if blood_units is not None else max(incident.blood_units, 1)
            self.assign_blood_donor(incident, candidate_id, units, eta_min, actor)

    def mark_blood_required(self, incident: Incident, units: int) -> None:
        self._ensure_active(incident)
        if units <= 0:
            raise ValidationError("血液单位数必须为正数", {"units": units})
        incident.blood_required = True
        incident.blood_units = units
        self._touch(incident)

    # ------------------------------------------------------------------
    # 状态
    # ------------------------------------------------------------------

    def update_status(self, incident: Incident, new_status: IncidentStatus, actor: ActorRef) -> None:
        """
        推进事件状态

        终态请使用 resolve / cancel，二者需要结果或原因
        """
        self._ensure_active(incident)
        if new_status in (IncidentStatus.resolved, IncidentStatus.cancelled):
            raise ValidationError(
                "结束事件请使用 resolve 或 cancel 操作",
                {"status": new_status.value},
            )
        if can_transition(incident.status, new_status):
            self._check_track_order(incident, new_status)
        self._transition(incident, new_status)

        elapsed = self._elapsed_seconds(incident)
        if new_status == IncidentStatus.ambulance_arrived:
            incident.response_times.ambulance_arrival = elapsed
        elif new_status == IncidentStatus.volunteer_arrived:
            incident.response_times.volunteer_arrival = elapsed
        elif new_status == IncidentStatus.reached_hospital:
            incident.response_times.hospital_reach = elapsed

        self.add_timeline_event(incident, STATUS_EVENTS[new_status], STATUS_DESCRIPTIONS[new_status], actor)
        logger.info(f"事件{incident.id}状态更新: {new_status.value} by {actor.kind.value}")

    def resolve(
        self,
        incident: Incident,
        outcome: Optional[IncidentOutcome] = None,
        actor: Optional[ActorRef] = None,
    ) -> None:
        self._ensure_active(incident)
        self._transition(incident, IncidentStatus.resolved)
        now = self._clock.now()
        incident.outcome = outcome or IncidentOutcome()
        incident.resolved_at = now
        incident.response_times.total = self._elapsed_seconds(incident)

        if incident.outcome.hospital_admitted:
            self.add_timeline_event(incident, TimelineEventType.patient_admitted, "Patient admitted", actor)
        if incident.outcome.blood_transfused:
            self.add_timeline_event(incident, TimelineEventType.blood_transfused, "Blood transfused", actor)
        self.add_timeline_event(incident, TimelineEventType.incident_resolved, "Incident resolved", actor)
        logger.info(f"事件{incident.id}已结案，总时长{incident.response_times.total:.0f}s")

    def cancel(self, incident: Incident, reason: str, actor: ActorRef) -> None:
        self._ensure_active(incident)
        self._transition(incident, IncidentStatus.cancelled)
        incident.cancellation = Cancellation(reason=reason, actor=actor, cancelled_at=self._clock.now())
        self.add_timeline_event(
            incident,
            TimelineEventType.incident_cancelled,
            f"Incident cancelled: {reason}",
            actor,
        )
        logger.info(f"事件{incident.id}已取消: {reason}")

    # ------------------------------------------------------------------
    # 紧急联系人
    # ------------------------------------------------------------------

    def notify_contacts(
        self,
        incident: Incident,
        contacts: Iterable[EmergencyContact],
    ) -> list[ContactNotification]:
        """记录已通知的紧急联系人，不等待投递结果"""
        self._ensure_active(incident)
        now = self._clock.now()
        recorded = [
            ContactNotification(name=c.name, phone=c.phone, email=c.email, notified_at=now)
            for c in contacts
        ]
        if not recorded:
            return []
        incident.contacts_notified.extend(recorded)
        self.add_timeline_event(
            incident,
            TimelineEventType.contacts_notified,
            f"{len(recorded)} emergency contacts notified",
            ActorRef.system(),
        )
        return recorded

    def tracking_snapshot(self, incident: Incident) -> TrackingSnapshot:
        return TrackingSnapshot(
            incident_id=incident.id,
            patient=incident.patient,
            location=incident.location,
            status=incident.status,
            severity=incident.severity,
            assignments=incident.assignments.model_copy(),
            estimated_times=incident.estimated_times.model_copy(),
            timeline=list(incident.timeline),
        )


__all__ = ["TRACKS", "TRANSITIONS", "IncidentLifecycle", "can_transition"]
