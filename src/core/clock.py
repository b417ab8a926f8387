"""
时钟抽象

时间戳与响应时长统一从注入的时钟读取，测试中可替换为固定时钟
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """系统UTC时钟"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """可手动推进的固定时钟"""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


def ensure_aware(value: datetime) -> datetime:
    """无时区的时间按UTC处理"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


__all__ = ["Clock", "SystemClock", "FrozenClock", "ensure_aware"]
