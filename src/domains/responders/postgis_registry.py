"""
PostGIS 候选资源注册表

半径预过滤在数据库中用 ST_DWithin 完成，评分仍由 planning 层负责。
预占是带条件的 UPDATE: 仅当 status='available' 时更新，受影响行数为1即成功。
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.planning.algorithms.base import Location
from .registry import Snapshot
from .schemas import (
    AmbulanceSnapshot,
    BloodType,
    DonorSnapshot,
    GeoPoint,
    HospitalSnapshot,
    ReporterProfile,
    ResponderKind,
    VolunteerSnapshot,
)

logger = logging.getLogger(__name__)

_TABLES: Dict[ResponderKind, str] = {
    ResponderKind.ambulance: "ambulances",
    ResponderKind.hospital: "hospitals",
    ResponderKind.volunteer: "volunteers",
    ResponderKind.donor: "donors",
}

_LOCATION_COLUMNS: Dict[ResponderKind, str] = {
    ResponderKind.ambulance: "current_location",
    ResponderKind.hospital: "location",
    ResponderKind.volunteer: "current_location",
    ResponderKind.donor: "current_location",
}

_SELECT_COLUMNS: Dict[ResponderKind, str] = {
    ResponderKind.ambulance: """
        id::text, vehicle_number, type, status, is_active, is_verified,
        driver_name, driver_phone, fcm_token, email
    """,
    ResponderKind.hospital: """
        id::text, name, address, emergency_phone, status, is_active, is_verified,
        accepting_emergencies, bed_availability, facilities, specialists, fcm_token, email
    """,
    ResponderKind.volunteer: """
        id::text, full_name, phone, status, is_active, verification_status,
        certification, stats, fcm_token, email
    """,
    ResponderKind.donor: """
        id::text, full_name, phone, blood_type, status, is_active, is_verified,
        last_donation_date, health_info, stats, fcm_token, email
    """,
}

_MODELS = {
    ResponderKind.ambulance: AmbulanceSnapshot,
    ResponderKind.hospital: HospitalSnapshot,
    ResponderKind.volunteer: VolunteerSnapshot,
    ResponderKind.donor: DonorSnapshot,
}


class PostgisCandidateRegistry:
    """基于 PostgreSQL + PostGIS 的注册表"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _query_within(
        self,
        kind: ResponderKind,
        origin: Location,
        radius_km: float,
        extra_where: str = "",
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> List[Snapshot]:
        table = _TABLES[kind]
        column = _LOCATION_COLUMNS[kind]
        sql = text(f"""
            SELECT
                {_SELECT_COLUMNS[kind]},
                ST_X({column}::geometry) as lng,
                ST_Y({column}::geometry) as lat
            FROM {table}
            WHERE {column} IS NOT NULL
            AND ST_DWithin(
                {column}::geography,
                ST_SetSRID(ST_MakePoint(:origin_lng, :origin_lat), 4326)::geography,
                :radius_m
            )
            {extra_where}
        """)
        params = {
            "origin_lng": origin.lng,
            "origin_lat": origin.lat,
            "radius_m": radius_km * 1000,
            **(extra_params or {}),
        }
        async with self._session_factory() as session:
            result = await session.execute(sql, params)
            rows = result.mappings().all()

        snapshots = [_row_to_snapshot(kind, row) for row in rows]
        logger.debug(f"PostGIS半径查询: kind={kind.value}, radius={radius_km}km, 命中{len(snapshots)}")
        return snapshots

    async def query_ambulances(self, origin: Location, radius_km: float) -> List[AmbulanceSnapshot]:
        return await self._query_within(ResponderKind.ambulance, origin, radius_km)

    async def query_hospitals(self, origin: Location, radius_km: float) -> List[HospitalSnapshot]:
        return await self._query_within(ResponderKind.hospital, origin, radius_km)

    async def query_volunteers(self, origin: Location, radius_km: float) -> List[VolunteerSnapshot]:
        return await self._query_within(ResponderKind.volunteer, origin, radius_km)

    async def query_donors(
        self,
        origin: Location,
        radius_km: float,
        blood_types: Optional[List[BloodType]] = None,
    ) -> List[DonorSnapshot]:
        if blood_types is None:
            return await self._query_within(ResponderKind.donor, origin, radius_km)
        return await self._query_within(
            ResponderKind.donor,
            origin,
            radius_km,
            extra_where="AND blood_type = ANY(:blood_types)",
            extra_params={"blood_types": [b.value for b in blood_types]},
        )

    async def get_responder(self, kind: ResponderKind, responder_id: str) -> Optional[Snapshot]:
        column = _LOCATION_COLUMNS[kind]
        sql = text(f"""
            SELECT
                {_SELECT_COLUMNS[kind]},
                ST_X({column}::geometry) as lng,
                ST_Y({column}::geometry) as lat
            FROM {_TABLES[kind]}
            WHERE id::text = :id
        """)
        async with self._session_factory() as session:
            result = await session.execute(sql, {"id": responder_id})
            row = result.mappings().first()
        return _row_to_snapshot(kind, row) if row else None

    async def get_reporter(self, user_id: str) -> Optional[ReporterProfile]:
        sql = text("""
            SELECT id::text, full_name, email, date_of_birth, gender, blood_type,
                   chronic_conditions, current_medications, emergency_contacts
            FROM users
            WHERE id::text = :id
        """)
        async with self._session_factory() as session:
            result = await session.execute(sql, {"id": user_id})
            row = result.mappings().first()
        if row is None:
            return None
        data = dict(row)
        for key in ("chronic_conditions", "current_medications", "emergency_contacts"):
            data[key] = data.get(key) or []
        return ReporterProfile.model_validate(data)

    async def reserve(self, kind: ResponderKind, responder_id: str) -> bool:
        sql = text(f"""
            UPDATE {_TABLES[kind]}
            SET status = 'busy', updated_at = now()
            WHERE id::text = :id AND status = 'available'
        """)
        async with self._session_factory() as session:
            result = await session.execute(sql, {"id": responder_id})
            await session.commit()
        reserved = result.rowcount == 1
        if reserved:
            logger.info(f"资源已预占: {kind.value}/{responder_id}")
        return reserved

    async def release(self, kind: ResponderKind, responder_id: str) -> None:
        sql = text(f"""
            UPDATE {_TABLES[kind]}
            SET status = 'available', updated_at = now()
            WHERE id::text = :id AND status = 'busy'
        """)
        async with self._session_factory() as session:
            await session.execute(sql, {"id": responder_id})
            await session.commit()
        logger.info(f"资源已释放: {kind.value}/{responder_id}")

    async def update_location(
        self, kind: ResponderKind, responder_id: str, latitude: float, longitude: float,
    ) -> bool:
        column = _LOCATION_COLUMNS[kind]
        sql = text(f"""
            UPDATE {_TABLES[kind]}
            SET {column} = ST_SetSRID(ST_MakePoint(:lng, :lat), 4326)::geography,
                updated_at = now()
            WHERE id::text = :id
        """)
        async with self._session_factory() as session:
            result = await session.execute(sql, {"id": responder_id, "lat": latitude, "lng": longitude})
            await session.commit()
        return result.rowcount == 1


def _row_to_snapshot(kind: ResponderKind, row: Mapping[str, Any]) -> Snapshot:
    data = {k: v for k, v in dict(row).items() if v is not None}
    point = GeoPoint(latitude=data.pop("lat", None), longitude=data.pop("lng", None))
    if kind == ResponderKind.hospital:
        data["location"] = point
    else:
        data["current_location"] = point
    return _MODELS[kind].model_validate(data)


__all__ = ["PostgisCandidateRegistry"]
