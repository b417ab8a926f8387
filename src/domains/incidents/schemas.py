"""
急救事件数据模型（Pydantic Schemas）

Incident 是核心聚合：分诊、严重程度、状态、四个资源槽位、时间线与响应时长。
字段只能通过 lifecycle.IncidentLifecycle 的流转操作修改。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, Field, StrictBool

from src.domains.responders.schemas import BloodType, ResponderKind
from src.planning.algorithms.base import Location as GeoLocation


class IncidentType(str, Enum):
    self_report = "self"      # 本人呼救
    bystander = "bystander"   # 旁观者代报


class Severity(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class IncidentStatus(str, Enum):
    pending = "pending"
    ambulance_dispatched = "ambulance_dispatched"
    volunteer_dispatched = "volunteer_dispatched"
    ambulance_arrived = "ambulance_arrived"
    volunteer_arrived = "volunteer_arrived"
    patient_picked_up = "patient_picked_up"
    en_route_hospital = "en_route_hospital"
    reached_hospital = "reached_hospital"
    resolved = "resolved"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset({IncidentStatus.resolved, IncidentStatus.cancelled})


class TimelineEventType(str, Enum):
    sos_triggered = "sos_triggered"
    triage_completed = "triage_completed"
    ambulance_dispatched = "ambulance_dispatched"
    hospital_assigned = "hospital_assigned"
    volunteer_dispatched = "volunteer_dispatched"
    donor_requested = "donor_requested"
    offers_sent = "offers_sent"
    contacts_notified = "contacts_notified"
    ambulance_arrived = "ambulance_arrived"
    volunteer_arrived = "volunteer_arrived"
    patient_picked_up = "patient_picked_up"
    en_route_hospital = "en_route_hospital"
    reached_hospital = "reached_hospital"
    patient_admitted = "patient_admitted"
    blood_transfused = "blood_transfused"
    incident_resolved = "incident_resolved"
    incident_cancelled = "incident_cancelled"


class Slot(str, Enum):
    """事件的四个可分配资源槽位"""
    ambulance = "ambulance"
    hospital = "hospital"
    volunteer = "volunteer"
    blood_donor = "blood_donor"

    @property
    def responder_kind(self) -> ResponderKind:
        return {
            Slot.ambulance: ResponderKind.ambulance,
            Slot.hospital: ResponderKind.hospital,
            Slot.volunteer: ResponderKind.volunteer,
            Slot.blood_donor: ResponderKind.donor,
        }[self]


class ActorKind(str, Enum):
    user = "user"
    ambulance = "ambulance"
    volunteer = "volunteer"
    donor = "donor"
    hospital = "hospital"
    admin = "admin"
    system = "system"


class ActorRef(BaseModel):
    """时间线操作者（带类型标签的引用）"""
    kind: ActorKind
    id: Optional[str] = None

    @classmethod
    def system(cls) -> "ActorRef":
        return cls(kind=ActorKind.system)


# ============================================================================
# 请求模型
# ============================================================================

class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = "Unknown location"
    landmark: Optional[str] = None

    def to_geo(self) -> GeoLocation:
        return GeoLocation(lat=self.latitude, lng=self.longitude)


class TriageAnswers(BaseModel):
    """旁观者分诊问卷（三个布尔观察项）"""
    conscious: StrictBool
    breathing: StrictBool
    heavy_bleeding: StrictBool = Field(
        ..., validation_alias=AliasChoices("heavy_bleeding", "bleeding"),
    )
    additional_symptoms: Optional[str] = None


class IncidentReport(BaseModel):
    """创建事件（SOS或旁观者上报）"""
    type: IncidentType = IncidentType.self_report
    reported_by: str
    location: Location
    triage: Optional[dict[str, Any]] = Field(
        None, description="旁观者上报必填: conscious/breathing/heavy_bleeding",
    )
    victim_description: Optional[str] = None
    patient_blood_type: Optional[BloodType] = None
    required_specialty: Optional[str] = None
    request_blood: bool = False
    request_volunteer: bool = False


class IncidentStatusUpdate(BaseModel):
    status: IncidentStatus
    actor: ActorRef


class AssignmentAccept(BaseModel):
    slot: Slot
    candidate_id: str


class AssignmentDecline(BaseModel):
    slot: Slot
    candidate_id: str
    reason: Optional[str] = None


class IncidentCancel(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    actor: ActorRef


class IncidentOutcome(BaseModel):
    patient_status: str = "unknown"   # stable/critical/deceased/unknown
    treatment_provided: Optional[str] = None
    notes: Optional[str] = None
    hospital_admitted: bool = False
    blood_transfused: bool = False


class IncidentResolve(BaseModel):
    outcome: IncidentOutcome = Field(default_factory=IncidentOutcome)
    actor: Optional[ActorRef] = None


class LocationUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = None
    speed_kmh: Optional[float] = None


# ============================================================================
# 聚合
# ============================================================================

class PatientInfo(BaseModel):
    user_id: Optional[str] = None
    name: str = "Unknown victim"
    age: Optional[int] = None
    gender: str = "Unknown"
    blood_type: Optional[BloodType] = None
    known_conditions: list[str] = Field(default_factory=list)
    known_medications: list[str] = Field(default_factory=list)


class Assignments(BaseModel):
    ambulance: Optional[str] = None
    hospital: Optional[str] = None
    volunteer: Optional[str] = None
    blood_donor: Optional[str] = None


class EstimatedTimes(BaseModel):
    """各槽位ETA（分钟）"""
    ambulance_eta: Optional[int] = None
    hospital_eta: Optional[int] = None
    volunteer_eta: Optional[int] = None
    donor_eta: Optional[int] = None


class ResponseTimes(BaseModel):
    """自SOS起算的时长（秒）"""
    ambulance_dispatch: Optional[float] = None
    ambulance_arrival: Optional[float] = None
    volunteer_arrival: Optional[float] = None
    hospital_reach: Optional[float] = None
    total: Optional[float] = None


class TimelineEntry(BaseModel):
    event: TimelineEventType
    description: str = ""
    timestamp: datetime
    actor: Optional[ActorRef] = None


class ContactNotification(BaseModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    notified_at: datetime
    notification_status: str = "sent"


class Cancellation(BaseModel):
    reason: str
    actor: ActorRef
    cancelled_at: datetime


class Incident(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    type: IncidentType
    reported_by: str
    patient: PatientInfo = Field(default_factory=PatientInfo)
    location: Location
    triage: Optional[TriageAnswers] = None
    severity: Severity
    status: IncidentStatus = IncidentStatus.pending
    assignments: Assignments = Field(default_factory=Assignments)
    estimated_times: EstimatedTimes = Field(default_factory=EstimatedTimes)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    response_times: ResponseTimes = Field(default_factory=ResponseTimes)
    contacts_notified: list[ContactNotification] = Field(default_factory=list)
    required_specialty: Optional[str] = None
    blood_required: bool = False
    blood_units: int = 0
    outcome: Optional[IncidentOutcome] = None
    cancellation: Optional[Cancellation] = None
    sos_triggered_at: datetime
    resolved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.critical


# ============================================================================
# 响应模型
# ============================================================================

class DispatchSummary(BaseModel):
    """创建事件后的派单概要，"未找到资源"作为独立标志返回而不是失败"""
    incident: Incident
    ambulance_found: bool = False
    hospital_found: bool = False
    volunteers_notified: int = 0
    donors_notified: int = 0
    contacts_notified: int = 0
    ambulance_eta: Optional[int] = None
    hospital_name: Optional[str] = None
    tracking_link: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


class ResponderPosition(BaseModel):
    latitude: float
    longitude: float
    updated_at: datetime
    heading: Optional[float] = None
    speed_kmh: Optional[float] = None


class TrackingSnapshot(BaseModel):
    incident_id: UUID
    patient: PatientInfo
    location: Location
    status: IncidentStatus
    severity: Severity
    assignments: Assignments
    estimated_times: EstimatedTimes
    timeline: list[TimelineEntry]
    # 最后已知位置，未上报或已过期时为 None
    ambulance_location: Optional[ResponderPosition] = None
    volunteer_location: Optional[ResponderPosition] = None


class AcceptResult(BaseModel):
    accepted: bool
    reason: Optional[str] = None   # expired/slot_taken/not_pending
    offer_id: Optional[UUID] = None


class IncidentListResponse(BaseModel):
    items: list[Incident]
    total: int
    page: int
    page_size: int


class ResponderLocationResponse(BaseModel):
    kind: ResponderKind
    responder_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    updated_at: Optional[datetime] = None
    known: bool = False
