"""
分诊分级模块
"""

from .classifier import (
    ActionPlan,
    calculate_severity,
    extract_specialties,
    generate_action_plan,
    severity_for_report,
    validate_triage,
)

__all__ = [
    "ActionPlan",
    "calculate_severity",
    "extract_specialties",
    "generate_action_plan",
    "severity_for_report",
    "validate_triage",
]
