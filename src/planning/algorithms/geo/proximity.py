"""
邻近检索(GeoIndex)

给定起点与候选池:
1. 按资格谓词过滤（不合格者静默丢弃）
2. 丢弃坐标缺失/非法的候选（记录告警，不报错）
3. 计算球面距离与按速度估算的ETA
4. 丢弃超出最大半径者，按距离升序，截断到limit

候选为空是正常结果（资源耗尽），返回空列表。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from ..base import Location, haversine_distance, estimate_travel_time, validate_coordinates, SpeedProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ProximityHit(Generic[T]):
    """邻近检索命中"""
    candidate: T
    distance_km: float
    eta_min: int


def find_nearest(
    origin: Location,
    candidates: Iterable[T],
    location_of: Callable[[T], Optional[Location]],
    eligibility: Optional[Callable[[T], bool]] = None,
    max_radius_km: Optional[float] = None,
    limit: Optional[int] = None,
    speed_kmh: float = SpeedProfile.VEHICLE,
) -> List[ProximityHit[T]]:
    """
    查找距起点最近的合格候选

    Args:
        origin: 起点
        candidates: 候选池
        location_of: 取候选当前位置，无位置返回None
        eligibility: 资格谓词，None表示全部合格
        max_radius_km: 最大半径，None表示不限
        limit: 返回数量上限，None表示不限
        speed_kmh: ETA估算速度，由调用方按资源类型给出

    Returns:
        按距离升序的命中列表

    Raises:
        ValueError: 起点坐标非法或速度非正
    """
    if not validate_coordinates(origin.lat, origin.lng):
        raise ValueError(f"起点坐标非法: {origin}")
    if speed_kmh <= 0:
        raise ValueError(f"speed_kmh必须为正数: {speed_kmh}")

    hits: List[ProximityHit[T]] = []
    for candidate in candidates:
        if eligibility is not None and not eligibility(candidate):
            continue

        loc = location_of(candidate)
        if loc is None or not validate_coordinates(loc.lat, loc.lng):
            logger.warning(f"候选坐标无效，已跳过: {_candidate_id(candidate)}")
            continue

        distance = haversine_distance(origin, loc)
        if max_radius_km is not None and distance > max_radius_km:
            continue

        hits.append(ProximityHit(
            candidate=candidate,
            distance_km=distance,
            eta_min=estimate_travel_time(distance, speed_kmh),
        ))

    hits.sort(key=lambda h: h.distance_km)

    if limit is not None:
        hits = hits[:max(limit, 0)]

    logger.debug(f"邻近检索: 命中{len(hits)}个, 半径={max_radius_km}km, limit={limit}")
    return hits


def _candidate_id(candidate: object) -> str:
    return str(getattr(candidate, "id", candidate))


__all__ = ["ProximityHit", "find_nearest"]
