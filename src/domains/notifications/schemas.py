"""
通知与派单邀约数据模型
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from src.domains.incidents.schemas import ActorKind, Slot


class NotificationKind(str, Enum):
    emergency_alert = "emergency_alert"
    ambulance_assigned = "ambulance_assigned"
    hospital_assigned = "hospital_assigned"
    volunteer_offer = "volunteer_offer"
    donor_offer = "donor_offer"
    offer_accepted = "offer_accepted"
    offer_superseded = "offer_superseded"
    status_update = "status_update"
    contact_alert = "contact_alert"
    incident_cancelled = "incident_cancelled"
    incident_resolved = "incident_resolved"


class OfferStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    expired = "expired"
    superseded = "superseded"


class Recipient(BaseModel):
    """通知接收方；紧急联系人没有账号，id为空"""
    kind: ActorKind
    id: Optional[str] = None
    name: Optional[str] = None
    fcm_token: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def label(self) -> str:
        return self.id or self.email or self.phone or self.name or "unknown"


class NotificationMessage(BaseModel):
    kind: NotificationKind
    title: str
    body: str
    incident_id: Optional[UUID] = None
    priority: str = "high"
    data: dict[str, Any] = Field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "body": self.body,
            "incident_id": str(self.incident_id) if self.incident_id else None,
            "priority": self.priority,
            "data": self.data,
        }


class DeliveryOutcome(BaseModel):
    channel: str
    recipient: str
    delivered: bool
    error: Optional[str] = None


class DispatchOffer(BaseModel):
    """志愿者/献血者的限时派单邀约"""
    id: UUID = Field(default_factory=uuid4)
    incident_id: UUID
    slot: Slot
    candidate_id: str
    score: float
    distance_km: float
    eta_min: int
    status: OfferStatus = OfferStatus.pending
    created_at: datetime
    expires_at: datetime
    responded_at: Optional[datetime] = None
    decline_reason: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
