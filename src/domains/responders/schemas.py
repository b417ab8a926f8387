"""
响应资源数据模型（Pydantic Schemas）

救护车/医院/志愿者/献血者的只读快照，由候选注册表提供。
调度引擎只读取快照，除分配/释放时翻转可用状态外不修改资源记录。
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from src.planning.algorithms.base import Location as GeoLocation


class ResponderKind(str, Enum):
    """资源类型"""
    ambulance = "ambulance"
    hospital = "hospital"
    volunteer = "volunteer"
    donor = "donor"


class AvailabilityStatus(str, Enum):
    """可用状态"""
    available = "available"
    on_duty = "on_duty"
    busy = "busy"
    off_duty = "off_duty"
    offline = "offline"
    maintenance = "maintenance"


class AmbulanceType(str, Enum):
    """救护车装备等级"""
    basic = "Basic"          # 基础生命支持
    als = "ALS"              # 高级生命支持
    cardiac = "Cardiac"      # 心脏监护型
    trauma = "Trauma"        # 创伤型
    neonatal = "Neonatal"    # 新生儿型


class BloodType(str, Enum):
    """ABO/Rh血型"""
    a_pos = "A+"
    a_neg = "A-"
    b_pos = "B+"
    b_neg = "B-"
    ab_pos = "AB+"
    ab_neg = "AB-"
    o_pos = "O+"
    o_neg = "O-"


class BedCategory(str, Enum):
    """床位类别"""
    general = "general"
    icu = "icu"
    emergency = "emergency"
    isolation = "isolation"


class VerificationStatus(str, Enum):
    """志愿者审核状态"""
    pending = "pending"
    verified = "verified"
    rejected = "rejected"
    suspended = "suspended"


class GeoPoint(BaseModel):
    """
    资源当前位置

    不做范围校验：坐标异常的候选由邻近检索静默剔除
    """
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_location(self) -> Optional[GeoLocation]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoLocation(lat=self.latitude, lng=self.longitude)


class _Snapshot(BaseModel):
    id: str
    status: AvailabilityStatus = AvailabilityStatus.available
    is_active: bool = True
    fcm_token: Optional[str] = None
    email: Optional[str] = None


# ============================================================================
# 救护车
# ============================================================================

class AmbulanceSnapshot(_Snapshot):
    vehicle_number: str = ""
    type: AmbulanceType = AmbulanceType.basic
    is_verified: bool = True
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    current_location: Optional[GeoPoint] = None


# ============================================================================
# 医院
# ============================================================================

class BedCount(BaseModel):
    total: int = Field(0, ge=0)
    available: int = Field(0, ge=0)


class HospitalFacilities(BaseModel):
    oxygen_available: bool = False
    ventilators: int = Field(0, ge=0)
    blood_bank: bool = False


class Specialist(BaseModel):
    name: str = ""
    specialization: str
    is_available: bool = True


class HospitalSnapshot(_Snapshot):
    name: str = ""
    address: Optional[str] = None
    emergency_phone: Optional[str] = None
    is_verified: bool = True
    accepting_emergencies: bool = True
    location: Optional[GeoPoint] = None
    bed_availability: dict[BedCategory, BedCount] = Field(default_factory=dict)
    facilities: HospitalFacilities = Field(default_factory=HospitalFacilities)
    specialists: list[Specialist] = Field(default_factory=list)

    def available_beds(self, category: BedCategory) -> int:
        beds = self.bed_availability.get(category)
        return beds.available if beds else 0

    def has_available_specialist(self, specialization: str) -> bool:
        return any(
            s.specialization == specialization and s.is_available
            for s in self.specialists
        )


# ============================================================================
# 志愿者
# ============================================================================

class Certification(BaseModel):
    type: str = "CPR"
    is_verified: bool = False
    expiry_date: Optional[datetime] = None


class VolunteerStats(BaseModel):
    completed_missions: int = Field(0, ge=0)
    average_rating: float = Field(0, ge=0, le=5)


class VolunteerSnapshot(_Snapshot):
    full_name: str = ""
    phone: Optional[str] = None
    verification_status: VerificationStatus = VerificationStatus.pending
    certification: Optional[Certification] = None
    stats: VolunteerStats = Field(default_factory=VolunteerStats)
    current_location: Optional[GeoPoint] = None


# ============================================================================
# 献血者
# ============================================================================

class DonorHealthInfo(BaseModel):
    weight_kg: Optional[float] = None
    has_chronic_illness: bool = False


class DonorStats(BaseModel):
    completed_donations: int = Field(0, ge=0)


class DonorSnapshot(_Snapshot):
    full_name: str = ""
    phone: Optional[str] = None
    blood_type: BloodType
    is_verified: bool = True
    last_donation_date: Optional[datetime] = None
    health_info: DonorHealthInfo = Field(default_factory=DonorHealthInfo)
    stats: DonorStats = Field(default_factory=DonorStats)
    current_location: Optional[GeoPoint] = None


# ============================================================================
# 上报人档案（自救呼叫时读取病史与紧急联系人）
# ============================================================================

class EmergencyContact(BaseModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    relation: Optional[str] = None


class ReporterProfile(BaseModel):
    id: str
    full_name: str = ""
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    blood_type: Optional[BloodType] = None
    chronic_conditions: list[str] = Field(default_factory=list)
    current_medications: list[str] = Field(default_factory=list)
    emergency_contacts: list[EmergencyContact] = Field(default_factory=list)

    def age_on(self, today: date) -> Optional[int]:
        if self.date_of_birth is None:
            return None
        years = today.year - self.date_of_birth.year
        if (today.month, today.day) < (self.date_of_birth.month, self.date_of_birth.day):
            years -= 1
        return years
