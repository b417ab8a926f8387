"""
救护车选择算法

业务逻辑:
=========
1. 候选池: 可用 + 启用 + 已认证，且在最大半径(默认20km)内
2. 评分(越小越好):
   score = 0.4·(距离/20) + 0.4·(ETA/30) + 0.2·(1 − 装备匹配度)
3. 装备匹配度:
   - critical: Cardiac/ALS 1.0, 其他 0.3
   - high:     ALS/Cardiac 1.0, Basic 0.7, 其他 0.5
   - medium/low: Basic 1.0, 其他 0.8
4. 输出按评分升序（同分时距离近者优先）的完整排序，
   调用方依次尝试预占，抢占失败则取下一名
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from src.domains.incidents.schemas import Severity
from src.domains.responders.schemas import AmbulanceSnapshot, AmbulanceType, AvailabilityStatus

from ..base import AlgorithmBase, AlgorithmResult, AlgorithmStatus, Location, SpeedProfile
from ..geo import find_nearest
from .common import ScoredCandidate, point_to_location, safe_ratio

logger = logging.getLogger(__name__)


def equipment_match(ambulance_type: AmbulanceType, severity: Severity) -> float:
    """装备与严重程度的匹配度(0~1)"""
    if severity == Severity.critical:
        if ambulance_type in (AmbulanceType.cardiac, AmbulanceType.als):
            return 1.0
        return 0.3
    if severity == Severity.high:
        if ambulance_type in (AmbulanceType.als, AmbulanceType.cardiac):
            return 1.0
        if ambulance_type == AmbulanceType.basic:
            return 0.7
        return 0.5
    return 1.0 if ambulance_type == AmbulanceType.basic else 0.8


def is_ambulance_eligible(ambulance: AmbulanceSnapshot) -> bool:
    return (
        ambulance.status == AvailabilityStatus.available
        and ambulance.is_active
        and ambulance.is_verified
    )


class AmbulanceMatcher(AlgorithmBase):
    """
    救护车评分选择器

    输入:
        origin: 事发位置 Location
        candidates: AmbulanceSnapshot 列表
        severity: Severity

    输出 solution: 按评分升序的 ScoredCandidate 列表，越小越好
    """

    def get_default_params(self) -> Dict[str, Any]:
        return {
            "max_radius_km": 20.0,
            "speed_kmh": SpeedProfile.VEHICLE,
            "distance_norm_km": 20.0,
            "eta_norm_min": 30.0,
            "weight_distance": 0.4,
            "weight_eta": 0.4,
            "weight_equipment": 0.2,
        }

    def validate_input(self, problem: Dict[str, Any]) -> Tuple[bool, str]:
        if not isinstance(problem.get("origin"), Location):
            return False, "缺少 origin"
        if "candidates" not in problem:
            return False, "缺少 candidates"
        if not isinstance(problem.get("severity"), Severity):
            return False, "缺少 severity"
        return True, ""

    def solve(self, problem: Dict[str, Any]) -> AlgorithmResult:
        origin: Location = problem["origin"]
        severity: Severity = problem["severity"]

        hits = find_nearest(
            origin,
            problem["candidates"],
            location_of=lambda a: point_to_location(a.current_location),
            eligibility=is_ambulance_eligible,
            max_radius_km=self.params["max_radius_km"],
            speed_kmh=self.params["speed_kmh"],
        )
        if not hits:
            return self.infeasible("半径内无可用救护车", {"radius_km": self.params["max_radius_km"]})

        ranked: List[ScoredCandidate[AmbulanceSnapshot]] = []
        for hit in hits:
            scored = self._score(hit.candidate, hit.distance_km, hit.eta_min, severity)
            if scored is None:
                return self.infeasible("归一化参数非法，无法评分")
            ranked.append(scored)

        ranked.sort(key=lambda s: (s.score, s.distance_km))
        best = ranked[0]
        logger.info(
            f"救护车评分完成: 候选{len(ranked)}辆, 最优={best.candidate_id} "
            f"score={best.score:.3f} distance={best.distance_km}km"
        )
        return AlgorithmResult(
            status=AlgorithmStatus.SUCCESS,
            solution=ranked,
            metrics={
                "candidate_count": len(ranked),
                "best_score": best.score,
                "best_distance_km": best.distance_km,
            },
            trace={"severity": severity.value, "ranking": [s.to_dict() for s in ranked]},
            time_ms=0,
        )

    def _score(
        self,
        ambulance: AmbulanceSnapshot,
        distance_km: float,
        eta_min: int,
        severity: Severity,
    ) -> Optional[ScoredCandidate[AmbulanceSnapshot]]:
        distance_term = safe_ratio(distance_km, self.params["distance_norm_km"])
        eta_term = safe_ratio(eta_min, self.params["eta_norm_min"])
        if distance_term is None or eta_term is None:
            return None
        equipment = equipment_match(ambulance.type, severity)
        score = (
            self.params["weight_distance"] * distance_term
            + self.params["weight_eta"] * eta_term
            + self.params["weight_equipment"] * (1 - equipment)
        )
        return ScoredCandidate(
            candidate=ambulance,
            distance_km=distance_km,
            eta_min=eta_min,
            score=score,
            breakdown={"distance": distance_term, "eta": eta_term, "equipment_match": equipment},
        )


def rank_ambulances(
    origin: Location,
    candidates: List[AmbulanceSnapshot],
    severity: Severity,
    params: Optional[Dict[str, Any]] = None,
) -> List[ScoredCandidate[AmbulanceSnapshot]]:
    """评分升序排序，无候选返回空列表"""
    result = AmbulanceMatcher(params).run({"origin": origin, "candidates": candidates, "severity": severity})
    return result.solution if result.found else []


def select_best_ambulance(
    origin: Location,
    candidates: List[AmbulanceSnapshot],
    severity: Severity,
    params: Optional[Dict[str, Any]] = None,
) -> Optional[ScoredCandidate[AmbulanceSnapshot]]:
    """评分最小者，无候选返回None"""
    ranked = rank_ambulances(origin, candidates, severity, params)
    return ranked[0] if ranked else None
