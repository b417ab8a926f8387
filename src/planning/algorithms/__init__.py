"""
急救调度 - 算法模块

模块结构:
- geo/       邻近检索(球面距离 + ETA)
- triage/    分诊分级与行动方案
- matching/  救护车/医院评分选择、志愿者/献血者排序

triage/ 与 matching/ 依赖领域模型，需按子模块显式导入
"""

from .base import (
    AlgorithmBase,
    AlgorithmResult,
    AlgorithmStatus,
    Location,
    SpeedProfile,
    estimate_travel_time,
    haversine_distance,
    validate_coordinates,
)

# 邻近检索
from .geo import ProximityHit, find_nearest

__all__ = [
    # 基类
    "AlgorithmBase",
    "AlgorithmResult",
    "AlgorithmStatus",
    "Location",
    "SpeedProfile",
    "estimate_travel_time",
    "haversine_distance",
    "validate_coordinates",
    # 邻近检索
    "ProximityHit",
    "find_nearest",
]
