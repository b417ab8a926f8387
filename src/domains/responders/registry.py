"""
候选资源注册表

调度引擎通过注册表读取候选快照并预占/释放资源。
reserve 为原子操作: 仅当资源当前为 available 时置为 busy 并返回 True，
并发抢占同一资源时只有一方成功。
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Union

from src.planning.algorithms.base import Location, haversine_distance, validate_coordinates
from .schemas import (
    AmbulanceSnapshot,
    AvailabilityStatus,
    BloodType,
    DonorSnapshot,
    GeoPoint,
    HospitalSnapshot,
    ReporterProfile,
    ResponderKind,
    VolunteerSnapshot,
)

logger = logging.getLogger(__name__)

Snapshot = Union[AmbulanceSnapshot, HospitalSnapshot, VolunteerSnapshot, DonorSnapshot]


class CandidateRegistry(Protocol):
    """候选资源注册表接口"""

    async def query_ambulances(self, origin: Location, radius_km: float) -> List[AmbulanceSnapshot]: ...

    async def query_hospitals(self, origin: Location, radius_km: float) -> List[HospitalSnapshot]: ...

    async def query_volunteers(self, origin: Location, radius_km: float) -> List[VolunteerSnapshot]: ...

    async def query_donors(
        self,
        origin: Location,
        radius_km: float,
        blood_types: Optional[List[BloodType]] = None,
    ) -> List[DonorSnapshot]: ...

    async def get_responder(self, kind: ResponderKind, responder_id: str) -> Optional[Snapshot]: ...

    async def get_reporter(self, user_id: str) -> Optional[ReporterProfile]: ...

    async def reserve(self, kind: ResponderKind, responder_id: str) -> bool: ...

    async def release(self, kind: ResponderKind, responder_id: str) -> None: ...

    async def update_location(
        self, kind: ResponderKind, responder_id: str, latitude: float, longitude: float,
    ) -> bool: ...


def _position(snapshot: Snapshot) -> Optional[GeoPoint]:
    if isinstance(snapshot, HospitalSnapshot):
        return snapshot.location
    return snapshot.current_location


class InMemoryCandidateRegistry:
    """
    内存注册表

    本地运行与测试使用；快照不可变，状态变化时整体替换
    """

    def __init__(self) -> None:
        self._items: Dict[ResponderKind, Dict[str, Snapshot]] = {kind: {} for kind in ResponderKind}
        self._reporters: Dict[str, ReporterProfile] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # 数据装载
    # ------------------------------------------------------------------

    def add(self, snapshot: Snapshot) -> None:
        self._items[_kind_of(snapshot)][snapshot.id] = snapshot

    def add_reporter(self, profile: ReporterProfile) -> None:
        self._reporters[profile.id] = profile

    def status_of(self, kind: ResponderKind, responder_id: str) -> Optional[AvailabilityStatus]:
        item = self._items[kind].get(responder_id)
        return item.status if item else None

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def _within(self, kind: ResponderKind, origin: Location, radius_km: float) -> List[Snapshot]:
        result: List[Snapshot] = []
        for item in self._items[kind].values():
            point = _position(item)
            if point is None or not validate_coordinates(point.latitude, point.longitude):
                continue
            if haversine_distance(origin, point.to_location()) <= radius_km:
                result.append(item)
        return result

    async def query_ambulances(self, origin: Location, radius_km: float) -> List[AmbulanceSnapshot]:
        return self._within(ResponderKind.ambulance, origin, radius_km)

    async def query_hospitals(self, origin: Location, radius_km: float) -> List[HospitalSnapshot]:
        return self._within(ResponderKind.hospital, origin, radius_km)

    async def query_volunteers(self, origin: Location, radius_km: float) -> List[VolunteerSnapshot]:
        return self._within(ResponderKind.volunteer, origin, radius_km)

    async def query_donors(
        self,
        origin: Location,
        radius_km: float,
        blood_types: Optional[List[BloodType]] = None,
    ) -> List[DonorSnapshot]:
        donors = self._within(ResponderKind.donor, origin, radius_km)
        if blood_types is None:
            return donors
        allowed = set(blood_types)
        return [d for d in donors if d.blood_type in allowed]

    async def get_responder(self, kind: ResponderKind, responder_id: str) -> Optional[Snapshot]:
        return self._items[kind].get(responder_id)

    async def get_reporter(self, user_id: str) -> Optional[ReporterProfile]:
        return self._reporters.get(user_id)

    # ------------------------------------------------------------------
    # 预占/释放
    # ------------------------------------------------------------------

    async def reserve(self, kind: ResponderKind, responder_id: str) -> bool:
        async with self._lock:
            item = self._items[kind].get(responder_id)
            if item is None or item.status != AvailabilityStatus.available:
                return False
            self._items[kind][responder_id] = item.model_copy(update={"status": AvailabilityStatus.busy})
            logger.info(f"资源已预占: {kind.value}/{responder_id}")
            return True

    async def release(self, kind: ResponderKind, responder_id: str) -> None:
        async with self._lock:
            item = self._items[kind].get(responder_id)
            if item is None or item.status != AvailabilityStatus.busy:
                return
            self._items[kind][responder_id] = item.model_copy(update={"status": AvailabilityStatus.available})
            logger.info(f"资源已释放: {kind.value}/{responder_id}")

    async def update_location(
        self, kind: ResponderKind, responder_id: str, latitude: float, longitude: float,
    ) -> bool:
        async with self._lock:
            item = self._items[kind].get(responder_id)
            if item is None:
                return False
            point = GeoPoint(latitude=latitude, longitude=longitude)
            field = "location" if kind == ResponderKind.hospital else "current_location"
            self._items[kind][responder_id] = item.model_copy(update={field: point})
            return True


def _kind_of(snapshot: Snapshot) -> ResponderKind:
    if isinstance(snapshot, AmbulanceSnapshot):
        return ResponderKind.ambulance
    if isinstance(snapshot, HospitalSnapshot):
        return ResponderKind.hospital
    if isinstance(snapshot, VolunteerSnapshot):
        return ResponderKind.volunteer
    if isinstance(snapshot, DonorSnapshot):
        return ResponderKind.donor
    raise TypeError(f"未知的资源快照类型: {type(snapshot).__name__}")


__all__ = ["CandidateRegistry", "InMemoryCandidateRegistry", "Snapshot"]
