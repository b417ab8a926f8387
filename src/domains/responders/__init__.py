"""
响应资源模块

救护车/医院/志愿者/献血者快照与候选注册表
"""

from .postgis_registry import PostgisCandidateRegistry
from .registry import CandidateRegistry, InMemoryCandidateRegistry
from .schemas import (
    AmbulanceSnapshot, AmbulanceType, AvailabilityStatus, BloodType,
    DonorSnapshot, HospitalSnapshot, ReporterProfile, ResponderKind,
    VolunteerSnapshot,
)

__all__ = [
    "CandidateRegistry",
    "InMemoryCandidateRegistry",
    "PostgisCandidateRegistry",
    "AmbulanceSnapshot",
    "AmbulanceType",
    "AvailabilityStatus",
    "BloodType",
    "DonorSnapshot",
    "HospitalSnapshot",
    "ReporterProfile",
    "ResponderKind",
    "VolunteerSnapshot",
]
