"""
医院选择算法

业务逻辑:
=========
1. 候选池: 启用 + 已认证 + 接收急诊，且所需类别(默认emergency)床位>0，
   在最大半径(默认30km)内；床位为0者在评分前剔除
2. 评分(越小越好):
   score = 0.4·(距离/25) + 0.2·床位分 + 0.2·(1 − 设施分) + 0.2·(1 − 专科分)
   - 床位分 = 1 − min(床位, 5)/5
   - 设施分: critical 且有氧气且呼吸机>0 为1.0，否则0.5
   - 专科分: 所需专科有在岗医生为1.0，否则0.5
3. ETA按转运速度(50km/h)估算
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from src.domains.incidents.schemas import Severity
from src.domains.responders.schemas import BedCategory, HospitalSnapshot

from ..base import AlgorithmBase, AlgorithmResult, AlgorithmStatus, Location, SpeedProfile
from ..geo import find_nearest
from .common import ScoredCandidate, point_to_location, safe_ratio

logger = logging.getLogger(__name__)

BED_SATURATION = 5


def bed_score(available_beds: int) -> float:
    return 1 - min(available_beds, BED_SATURATION) / BED_SATURATION


def facility_score(hospital: HospitalSnapshot, severity: Severity) -> float:
    facilities = hospital.facilities
    if severity == Severity.critical and facilities.oxygen_available and facilities.ventilators > 0:
        return 1.0
    return 0.5


def specialist_score(hospital: HospitalSnapshot, required_specialty: Optional[str]) -> float:
    if required_specialty and hospital.has_available_specialist(required_specialty):
        return 1.0
    return 0.5


class HospitalMatcher(AlgorithmBase):
    """
    医院评分选择器

    输入:
        origin: 事发位置
        candidates: HospitalSnapshot 列表
        severity: Severity
        required_specialty: 所需专科(可选)

    输出 solution: 按评分升序的 ScoredCandidate 列表，越小越好
    """

    def get_default_params(self) -> Dict[str, Any]:
        return {
            "max_radius_km": 30.0,
            "speed_kmh": SpeedProfile.HOSPITAL_TRANSPORT,
            "distance_norm_km": 25.0,
            "bed_category": BedCategory.emergency,
            "weight_distance": 0.4,
            "weight_beds": 0.2,
            "weight_facility": 0.2,
            "weight_specialist": 0.2,
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
        required_specialty: Optional[str] = problem.get("required_specialty")
        category = BedCategory(self.params["bed_category"])

        def eligible(h: HospitalSnapshot) -> bool:
            return (
                h.is_active
                and h.is_verified
                and h.accepting_emergencies
                and h.available_beds(category) > 0
            )

        hits = find_nearest(
            origin,
            problem["candidates"],
            location_of=lambda h: point_to_location(h.location),
            eligibility=eligible,
            max_radius_km=self.params["max_radius_km"],
            speed_kmh=self.params["speed_kmh"],
        )
        if not hits:
            return self.infeasible(
                f"半径内无{category.value}床位可用的医院",
                {"radius_km": self.params["max_radius_km"], "bed_category": category.value},
            )

        distance_norm = self.params["distance_norm_km"]
        ranked: List[ScoredCandidate[HospitalSnapshot]] = []
        for hit in hits:
            distance_term = safe_ratio(hit.distance_km, distance_norm)
            if distance_term is None:
                return self.infeasible("归一化参数非法，无法评分")
            hospital = hit.candidate
            beds = bed_score(hospital.available_beds(category))
            facility = facility_score(hospital, severity)
            specialist = specialist_score(hospital, required_specialty)
            score = (
                self.params["weight_distance"] * distance_term
                + self.params["weight_beds"] * beds
                + self.params["weight_facility"] * (1 - facility)
                + self.params["weight_specialist"] * (1 - specialist)
            )
            ranked.append(ScoredCandidate(
                candidate=hospital,
                distance_km=hit.distance_km,
                eta_min=hit.eta_min,
                score=score,
                breakdown={
                    "distance": distance_term,
                    "beds": beds,
                    "facility": facility,
                    "specialist": specialist,
                },
            ))

        ranked.sort(key=lambda s: (s.score, s.distance_km))
        best = ranked[0]
        logger.info(f"医院评分完成: 候选{len(ranked)}家, 最优={best.candidate.name or best.candidate_id} score={best.score:.3f}")
        return AlgorithmResult(
            status=AlgorithmStatus.SUCCESS,
            solution=ranked,
            metrics={"candidate_count": len(ranked), "best_score": best.score},
            trace={
                "severity": severity.value,
                "required_specialty": required_specialty,
                "ranking": [s.to_dict() for s in ranked],
            },
            time_ms=0,
        )


def select_best_hospital(
    origin: Location,
    candidates: List[HospitalSnapshot],
    severity: Severity,
    required_specialty: Optional[str] = None,
    params: Optional[Dict[str, Any]] = None,
) -> Optional[ScoredCandidate[HospitalSnapshot]]:
    """评分最小者，无候选返回None"""
    result = HospitalMatcher(params).run({
        "origin": origin,
        "candidates": candidates,
        "severity": severity,
        "required_specialty": required_specialty,
    })
    return result.solution[0] if result.found else None
