"""
评分结果的通用结构
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

from src.domains.responders.schemas import GeoPoint
from ..base import Location

T = TypeVar("T")


@dataclass
class ScoredCandidate(Generic[T]):
    """
    带评分的候选

    score 的方向由各匹配器自行约定:
    救护车/医院越小越好，志愿者/献血者越大越好
    """
    candidate: T
    distance_km: float
    eta_min: int
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def candidate_id(self) -> str:
        return str(getattr(self.candidate, "id", ""))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.candidate_id,
            "distance_km": self.distance_km,
            "eta_min": self.eta_min,
            "score": round(self.score, 4),
            "breakdown": {k: round(v, 4) for k, v in self.breakdown.items()},
        }


def point_to_location(point: Optional[GeoPoint]) -> Optional[Location]:
    return point.to_location() if point is not None else None


def safe_ratio(value: float, norm: float) -> Optional[float]:
    """归一化，归一化因子非正时返回None（视为无法匹配）"""
    if norm is None or norm <= 0:
        return None
    return value / norm
