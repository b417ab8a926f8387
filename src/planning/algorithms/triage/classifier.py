"""
分诊分级与行动方案

业务逻辑:
=========
1. 严重程度判定表（旁观者三项观察）:
   - 无意识且无呼吸 -> critical
   - 无呼吸 -> critical
   - 无意识或大出血 -> high
   - 其他 -> medium
   本人呼救不经问卷，固定为 high

2. 行动方案:
   - 是否派遣志愿者、是否征集献血者
   - 救护车类型偏好、所需专科
   - 优先级(1最高)与目标响应时间
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from src.domains.incidents.schemas import IncidentType, Severity, TriageAnswers
from src.domains.responders.schemas import AmbulanceType

logger = logging.getLogger(__name__)

TRIAGE_FIELDS = ("conscious", "breathing", "heavy_bleeding")

AMBULANCE_TYPES_BY_SEVERITY: Dict[Severity, List[AmbulanceType]] = {
    Severity.critical: [AmbulanceType.cardiac, AmbulanceType.als, AmbulanceType.basic],
    Severity.high: [AmbulanceType.als, AmbulanceType.basic],
    Severity.medium: [AmbulanceType.basic, AmbulanceType.als],
    Severity.low: [AmbulanceType.basic],
}

PRIORITY_BY_SEVERITY: Dict[Severity, int] = {
    Severity.critical: 1,
    Severity.high: 2,
    Severity.medium: 3,
    Severity.low: 4,
}

# 目标响应时间(分钟)
RESPONSE_TIME_BY_SEVERITY: Dict[Severity, int] = {
    Severity.critical: 5,
    Severity.high: 8,
    Severity.medium: 12,
    Severity.low: 12,
}

# 描述关键词 -> 专科
SPECIALTY_KEYWORDS: Dict[str, tuple] = {
    "cardiology": ("chest", "heart"),
    "neurology": ("head", "brain"),
    "orthopedics": ("bone", "fracture"),
}


@dataclass
class ActionPlan:
    """分诊后的行动方案"""
    severity: Severity
    dispatch_volunteer: bool
    request_blood_donor: bool
    ambulance_types: List[AmbulanceType]
    specialties: List[str] = field(default_factory=list)
    priority: int = 3
    estimated_response_time: int = 12

    @property
    def primary_specialty(self) -> Optional[str]:
        """emergency_medicine之外的第一个专科"""
        for specialty in self.specialties:
            if specialty != "emergency_medicine":
                return specialty
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "dispatch_volunteer": self.dispatch_volunteer,
            "request_blood_donor": self.request_blood_donor,
            "ambulance_types": [t.value for t in self.ambulance_types],
            "specialties": list(self.specialties),
            "priority": self.priority,
            "estimated_response_time": self.estimated_response_time,
        }


def validate_triage(data: Optional[Mapping[str, Any]]) -> TriageAnswers:
    """
    校验分诊问卷

    三个字段必须都是布尔值（兼容旧字段名 bleeding）

    Raises:
        ValueError: 问卷缺失或字段不是布尔值
    """
    if not data:
        raise ValueError("旁观者上报必须提供分诊问卷")

    values = dict(data)
    if "heavy_bleeding" not in values and "bleeding" in values:
        values["heavy_bleeding"] = values.pop("bleeding")

    invalid = [name for name in TRIAGE_FIELDS if not isinstance(values.get(name), bool)]
    if invalid:
        raise ValueError(f"分诊字段必须为布尔值: {', '.join(invalid)}")

    return TriageAnswers(
        conscious=values["conscious"],
        breathing=values["breathing"],
        heavy_bleeding=values["heavy_bleeding"],
        additional_symptoms=values.get("additional_symptoms"),
    )


def calculate_severity(triage: TriageAnswers) -> Severity:
    """按判定表计算严重程度，自上而下首条命中"""
    if not triage.conscious and not triage.breathing:
        return Severity.critical
    if not triage.breathing:
        return Severity.critical
    if not triage.conscious or triage.heavy_bleeding:
        return Severity.high
    return Severity.medium


def severity_for_report(incident_type: IncidentType, triage: Optional[TriageAnswers]) -> Severity:
    """本人呼救固定为high，旁观者按问卷"""
    if incident_type == IncidentType.self_report:
        return Severity.high
    if triage is None:
        raise ValueError("旁观者上报必须提供分诊问卷")
    return calculate_severity(triage)


def extract_specialties(description: Optional[str]) -> List[str]:
    """从自由文本描述中按关键词提取专科"""
    if not description:
        return []
    text = description.lower()
    return [
        specialty
        for specialty, keywords in SPECIALTY_KEYWORDS.items()
        if any(k in text for k in keywords)
    ]


def generate_action_plan(
    severity: Severity,
    triage: Optional[TriageAnswers] = None,
    description: Optional[str] = None,
) -> ActionPlan:
    """
    生成行动方案

    Args:
        severity: 严重程度
        triage: 分诊问卷，本人呼救时为None
        description: 现场描述，用于专科关键词提取
    """
    not_breathing = triage is not None and not triage.breathing
    not_conscious = triage is not None and not triage.conscious
    bleeding = triage is not None and triage.heavy_bleeding

    specialties = ["emergency_medicine"]
    if bleeding:
        specialties.append("trauma")
    if not_breathing:
        specialties.append("cardiology")
    for specialty in extract_specialties(description):
        if specialty not in specialties:
            specialties.append(specialty)

    plan = ActionPlan(
        severity=severity,
        dispatch_volunteer=severity == Severity.critical and (not_breathing or not_conscious),
        request_blood_donor=bleeding and severity in (Severity.critical, Severity.high),
        ambulance_types=list(AMBULANCE_TYPES_BY_SEVERITY[severity]),
        specialties=specialties,
        priority=PRIORITY_BY_SEVERITY[severity],
        estimated_response_time=RESPONSE_TIME_BY_SEVERITY[severity],
    )
    logger.debug(f"行动方案: {plan.to_dict()}")
    return plan


__all__ = [
    "ActionPlan",
    "validate_triage",
    "calculate_severity",
    "severity_for_report",
    "extract_specialties",
    "generate_action_plan",
]
