"""
志愿者排序算法

评分(越大越好):
    score = 0.6·(1 − 距离/5) + 0.2·(完成任务数/50) + 0.2·(评分/5)

资格: 可用 + 启用 + 审核通过 + CPR证书已认证且未过期
按步行速度(15km/h)估算ETA，取半径5km内最近的若干人后按评分降序
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.core.clock import ensure_aware
from src.domains.responders.schemas import AvailabilityStatus, VerificationStatus, VolunteerSnapshot

from ..base import AlgorithmBase, AlgorithmResult, AlgorithmStatus, Location, SpeedProfile
from ..geo import find_nearest
from .common import ScoredCandidate, point_to_location, safe_ratio

logger = logging.getLogger(__name__)


def is_volunteer_eligible(volunteer: VolunteerSnapshot, now: datetime) -> bool:
    cert = volunteer.certification
    if cert is None or not cert.is_verified or cert.expiry_date is None:
        return False
    return (
        volunteer.status == AvailabilityStatus.available
        and volunteer.is_active
        and volunteer.verification_status == VerificationStatus.verified
        and ensure_aware(cert.expiry_date) > now
    )


class VolunteerRanker(AlgorithmBase):
    """
    输入:
        origin: 事发位置
        candidates: VolunteerSnapshot 列表
        now: 当前时间（证书有效期判断）

    输出 solution: 按评分降序的 ScoredCandidate 列表，越大越好
    """

    def get_default_params(self) -> Dict[str, Any]:
        return {
            "max_radius_km": 5.0,
            "limit": 5,
            "speed_kmh": SpeedProfile.ON_FOOT,
            "distance_norm_km": 5.0,
            "missions_norm": 50.0,
            "rating_norm": 5.0,
            "weight_distance": 0.6,
            "weight_experience": 0.2,
            "weight_rating": 0.2,
        }

    def validate_input(self, problem: Dict[str, Any]) -> Tuple[bool, str]:
        if not isinstance(problem.get("origin"), Location):
            return False, "缺少 origin"
        if "candidates" not in problem:
            return False, "缺少 candidates"
        if not isinstance(problem.get("now"), datetime):
            return False, "缺少 now"
        return True, ""

    def solve(self, problem: Dict[str, Any]) -> AlgorithmResult:
        now = ensure_aware(problem["now"])
        hits = find_nearest(
            problem["origin"],
            problem["candidates"],
            location_of=lambda v: point_to_location(v.current_location),
            eligibility=lambda v: is_volunteer_eligible(v, now),
            max_radius_km=self.params["max_radius_km"],
            limit=self.params["limit"],
            speed_kmh=self.params["speed_kmh"],
        )
        if not hits:
            return self.infeasible("半径内无合格志愿者", {"radius_km": self.params["max_radius_km"]})

        ranked: List[ScoredCandidate[VolunteerSnapshot]] = []
        for hit in hits:
            stats = hit.candidate.stats
            distance_ratio = safe_ratio(hit.distance_km, self.params["distance_norm_km"])
            experience = safe_ratio(stats.completed_missions, self.params["missions_norm"])
            rating = safe_ratio(stats.average_rating, self.params["rating_norm"])
            if distance_ratio is None or experience is None or rating is None:
                return self.infeasible("归一化参数非法，无法评分")
            score = (
                self.params["weight_distance"] * (1 - distance_ratio)
                + self.params["weight_experience"] * experience
                + self.params["weight_rating"] * rating
            )
            ranked.append(ScoredCandidate(
                candidate=hit.candidate,
                distance_km=hit.distance_km,
                eta_min=hit.eta_min,
                score=score,
                breakdown={"distance": 1 - distance_ratio, "experience": experience, "rating": rating},
            ))

        ranked.sort(key=lambda s: (-s.score, s.distance_km))
        return AlgorithmResult(
            status=AlgorithmStatus.SUCCESS,
            solution=ranked,
            metrics={"candidate_count": len(ranked), "best_score": ranked[0].score},
            trace={"ranking": [s.to_dict() for s in ranked]},
            time_ms=0,
        )


def rank_volunteers(
    origin: Location,
    candidates: List[VolunteerSnapshot],
    now: datetime,
    params: Optional[Dict[str, Any]] = None,
) -> List[ScoredCandidate[VolunteerSnapshot]]:
    """评分降序，无候选返回空列表"""
    result = VolunteerRanker(params).run({"origin": origin, "candidates": candidates, "now": now})
    return result.solution if result.found else []
