"""
评分算法基类与地理工具

- AlgorithmBase/AlgorithmResult: 各候选评分器的统一执行外壳
- Location/SpeedProfile: 坐标与速度档位
- haversine_distance/estimate_travel_time: 球面距离与直线ETA
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass
from enum import Enum
import math
import time
import logging

logger = logging.getLogger(__name__)


class AlgorithmStatus(Enum):
    """算法执行状态"""
    SUCCESS = "success"
    PARTIAL = "partial"  # 部分成功
    INFEASIBLE = "infeasible"  # 无可行解（候选资源耗尽）
    ERROR = "error"


@dataclass
class AlgorithmResult:
    """算法执行结果"""
    status: AlgorithmStatus
    solution: Any
    metrics: Dict[str, float]
    trace: Dict[str, Any]  # 追溯信息
    time_ms: float
    message: str = ""

    @property
    def found(self) -> bool:
        return self.status in (AlgorithmStatus.SUCCESS, AlgorithmStatus.PARTIAL) and bool(self.solution)


class AlgorithmBase(ABC):
    """
    评分/排序算法基类

    子类实现:
    1. get_default_params() - 半径、速度、归一化常数与权重
    2. validate_input() - 检查 origin/candidates 等必需字段
    3. solve() - 检索候选并评分，无候选时返回 infeasible()

    调用方一律通过 run() 执行；run() 不向外抛异常，
    失败以 ERROR 状态返回，found 为 False，由编排器按"未找到"处理。
    """

    def __init__(self, params: Dict[str, Any] = None):
        self.params = {**self.get_default_params(), **(params or {})}
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def solve(self, problem: Dict[str, Any]) -> AlgorithmResult:
        """
        Args:
            problem: 含 origin、candidates 及各算法所需字段

        Returns:
            solution 为 ScoredCandidate 列表的结果
        """

    @abstractmethod
    def validate_input(self, problem: Dict[str, Any]) -> Tuple[bool, str]:
        """返回 (是否合法, 错误信息)"""

    @abstractmethod
    def get_default_params(self) -> Dict[str, Any]:
        """默认参数，可被构造参数逐项覆盖"""

    def run(self, problem: Dict[str, Any]) -> AlgorithmResult:
        """校验输入、计时并执行 solve()"""
        valid, msg = self.validate_input(problem)
        if not valid:
            self.logger.warning(f"输入不合法: {msg}")
            return self._error_result(msg, {"error": msg}, 0)

        start_time = time.time()
        try:
            result = self.solve(problem)
        except Exception as e:
            self.logger.exception(f"评分执行异常: {e}")
            return self._error_result(str(e), {"exception": str(e)}, (time.time() - start_time) * 1000)
        result.time_ms = (time.time() - start_time) * 1000
        return result

    @staticmethod
    def _error_result(message: str, trace: Dict[str, Any], time_ms: float) -> AlgorithmResult:
        return AlgorithmResult(
            status=AlgorithmStatus.ERROR,
            solution=None,
            metrics={},
            trace=trace,
            time_ms=time_ms,
            message=message,
        )

    @staticmethod
    def infeasible(message: str, trace: Optional[Dict[str, Any]] = None) -> AlgorithmResult:
        """无候选时的标准结果，不视为错误"""
        return AlgorithmResult(
            status=AlgorithmStatus.INFEASIBLE,
            solution=None,
            metrics={},
            trace=trace or {},
            time_ms=0,
            message=message,
        )


# ============ 通用数据结构 ============

@dataclass(frozen=True)
class Location:
    """位置坐标(WGS-84)"""
    lat: float
    lng: float

    def to_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)

    @classmethod
    def from_dict(cls, d: Dict) -> "Location":
        return cls(lat=d.get("lat", 0), lng=d.get("lng", 0))


class SpeedProfile:
    """各类资源的平均速度(km/h)"""
    VEHICLE = 40.0
    ON_FOOT = 15.0
    DONOR_TRAVEL = 30.0
    HOSPITAL_TRANSPORT = 50.0


EARTH_RADIUS_KM = 6371


# ============ 通用工具函数 ============

def validate_coordinates(lat: Any, lng: Any) -> bool:
    """经纬度是否为合法数值且在取值范围内"""
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def haversine_distance(loc1: Location, loc2: Location) -> float:
    """
    计算两点间的球面距离(km)，保留两位小数

    使用Haversine公式
    """
    lat1, lon1 = math.radians(loc1.lat), math.radians(loc1.lng)
    lat2, lon2 = math.radians(loc2.lat), math.radians(loc2.lng)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return round(EARTH_RADIUS_KM * c, 2)


def estimate_travel_time(distance_km: float, speed_kmh: float = SpeedProfile.VEHICLE) -> int:
    """估算直线行驶时间(分钟，向上取整)"""
    if speed_kmh <= 0:
        raise ValueError(f"speed_kmh必须为正数: {speed_kmh}")
    return math.ceil(distance_km / speed_kmh * 60)


def format_distance(distance_km: float) -> str:
    """距离展示文本"""
    if distance_km < 1:
        return f"{round(distance_km * 1000)}m"
    return f"{distance_km:.1f}km"


def format_eta(minutes: int) -> str:
    """ETA展示文本"""
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}min"
