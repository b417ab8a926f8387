from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Database（可选，未配置时使用内存候选注册表）
    database_url: Optional[str] = None
    database_pool_size: int = 20

    # API
    api_prefix: str = "/api/v1"
    debug: bool = False

    # CORS
    cors_origins: list[str] = ["*"]

    # 推送/邮件网关（未配置时只走WebSocket实时通道）
    push_gateway_url: Optional[str] = None
    push_gateway_timeout: float = 5.0
    client_url: str = "http://localhost:3000"

    # 搜索半径(km)
    max_ambulance_radius_km: float = 20
    max_hospital_radius_km: float = 30
    max_volunteer_radius_km: float = 5
    max_donor_radius_km: float = 10

    # 候选数量上限
    volunteer_alert_limit: int = 5
    donor_alert_limit: int = 5

    # 速度档位(km/h)
    vehicle_speed_kmh: float = 40
    volunteer_speed_kmh: float = 15
    donor_speed_kmh: float = 30
    hospital_transport_speed_kmh: float = 50

    # 派单邀约有效期(分钟)，按严重程度
    offer_ttl_critical_min: int = 3
    offer_ttl_high_min: int = 5
    offer_ttl_medium_min: int = 8
    offer_ttl_low_min: int = 10

    # 位置缓存TTL(秒)
    location_ttl_seconds: int = 300

    required_bed_category: str = "emergency"
    default_blood_units: int = 2

    def offer_ttl_minutes(self, severity: str) -> int:
        """邀约有效期(分钟)"""
        return {
            "critical": self.offer_ttl_critical_min,
            "high": self.offer_ttl_high_min,
            "medium": self.offer_ttl_medium_min,
        }.get(severity, self.offer_ttl_low_min)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
