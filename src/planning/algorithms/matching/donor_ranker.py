"""
献血者排序算法

业务逻辑:
=========
1. 资格: 可用 + 启用 + 已认证，血型与受血者相容，
   距上次献血≥90天，体重≥45kg，无慢性病
2. 评分(越大越好):
   score = 0.5·(1 − 距离/10) + 0.3·血型匹配 + 0.1·(献血次数/10) + 0.1·间隔分
   - 血型匹配: 完全相同1.0，相容0.7
   - 间隔分: min(距上次献血天数/180, 1)，从未献血为1.0
3. 按驾车速度(30km/h)估算ETA，取半径10km内最近的若干人后按评分降序
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.core.clock import ensure_aware
from src.domains.responders.schemas import AvailabilityStatus, BloodType, DonorSnapshot

from ..base import AlgorithmBase, AlgorithmResult, AlgorithmStatus, Location, SpeedProfile
from ..geo import find_nearest
from .blood_compatibility import is_compatible
from .common import ScoredCandidate, point_to_location, safe_ratio

logger = logging.getLogger(__name__)

MIN_DAYS_BETWEEN_DONATIONS = 90
MIN_DONOR_WEIGHT_KG = 45
RECENCY_NORM_DAYS = 180


def days_since_donation(donor: DonorSnapshot, now: datetime) -> Optional[float]:
    if donor.last_donation_date is None:
        return None
    delta = now - ensure_aware(donor.last_donation_date)
    return delta.total_seconds() / 86400


def is_donor_eligible(donor: DonorSnapshot, recipient: BloodType, now: datetime) -> bool:
    if not (donor.status == AvailabilityStatus.available and donor.is_active and donor.is_verified):
        return False
    if not is_compatible(donor.blood_type, recipient):
        return False
    days = days_since_donation(donor, now)
    if days is not None and days < MIN_DAYS_BETWEEN_DONATIONS:
        return False
    health = donor.health_info
    # 未填写体重不视为不合格
    if health.weight_kg is not None and health.weight_kg < MIN_DONOR_WEIGHT_KG:
        return False
    return not health.has_chronic_illness


def recency_score(donor: DonorSnapshot, now: datetime) -> float:
    days = days_since_donation(donor, now)
    if days is None:
        return 1.0
    return min(days / RECENCY_NORM_DAYS, 1.0)


class DonorRanker(AlgorithmBase):
    """
    输入:
        origin: 事发位置
        candidates: DonorSnapshot 列表
        recipient_blood_type: 患者血型
        now: 当前时间

    输出 solution: 按评分降序的 ScoredCandidate 列表，越大越好
    """

    def get_default_params(self) -> Dict[str, Any]:
        return {
            "max_radius_km": 10.0,
            "limit": 5,
            "speed_kmh": SpeedProfile.DONOR_TRAVEL,
            "distance_norm_km": 10.0,
            "donations_norm": 10.0,
            "weight_distance": 0.5,
            "weight_match": 0.3,
            "weight_experience": 0.1,
            "weight_recency": 0.1,
        }

    def validate_input(self, problem: Dict[str, Any]) -> Tuple[bool, str]:
        if not isinstance(problem.get("origin"), Location):
            return False, "缺少 origin"
        if "candidates" not in problem:
            return False, "缺少 candidates"
        if not isinstance(problem.get("recipient_blood_type"), BloodType):
            return False, "缺少 recipient_blood_type"
        if not isinstance(problem.get("now"), datetime):
            return False, "缺少 now"
        return True, ""

    def solve(self, problem: Dict[str, Any]) -> AlgorithmResult:
        recipient: BloodType = problem["recipient_blood_type"]
        now = ensure_aware(problem["now"])

        hits = find_nearest(
            problem["origin"],
            problem["candidates"],
            location_of=lambda d: point_to_location(d.current_location),
            eligibility=lambda d: is_donor_eligible(d, recipient, now),
            max_radius_km=self.params["max_radius_km"],
            limit=self.params["limit"],
            speed_kmh=self.params["speed_kmh"],
        )
        if not hits:
            return self.infeasible(
                f"半径内无{recipient.value}相容的献血者",
                {"radius_km": self.params["max_radius_km"], "recipient": recipient.value},
            )

        ranked: List[ScoredCandidate[DonorSnapshot]] = []
        for hit in hits:
            donor = hit.candidate
            distance_ratio = safe_ratio(hit.distance_km, self.params["distance_norm_km"])
            experience = safe_ratio(donor.stats.completed_donations, self.params["donations_norm"])
            if distance_ratio is None or experience is None:
                return self.infeasible("归一化参数非法，无法评分")
            match = 1.0 if donor.blood_type == recipient else 0.7
            recency = recency_score(donor, now)
            score = (
                self.params["weight_distance"] * (1 - distance_ratio)
                + self.params["weight_match"] * match
                + self.params["weight_experience"] * experience
                + self.params["weight_recency"] * recency
            )
            ranked.append(ScoredCandidate(
                candidate=donor,
                distance_km=hit.distance_km,
                eta_min=hit.eta_min,
                score=score,
                breakdown={
                    "distance": 1 - distance_ratio,
                    "blood_match": match,
                    "experience": experience,
                    "recency": recency,
                },
            ))

        ranked.sort(key=lambda s: (-s.score, s.distance_km))
        return AlgorithmResult(
            status=AlgorithmStatus.SUCCESS,
            solution=ranked,
            metrics={"candidate_count": len(ranked), "best_score": ranked[0].score},
            trace={"recipient": recipient.value, "ranking": [s.to_dict() for s in ranked]},
            time_ms=0,
        )


def rank_donors(
    origin: Location,
    candidates: List[DonorSnapshot],
    recipient_blood_type: BloodType,
    now: datetime,
    params: Optional[Dict[str, Any]] = None,
) -> List[ScoredCandidate[DonorSnapshot]]:
    """评分降序，无候选返回空列表"""
    result = DonorRanker(params).run({
        "origin": origin,
        "candidates": candidates,
        "recipient_blood_type": recipient_blood_type,
        "now": now,
    })
    return result.solution if result.found else []
