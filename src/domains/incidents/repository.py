"""
急救事件数据访问层

每个事件一把 asyncio.Lock，所有槽位/状态修改必须在锁内完成:
    async with repo.lock(incident_id):
        incident = await repo.get(incident_id)
        ...
        await repo.save(incident)

同一上报人的"查重 + 建档"在 reporter_lock 内完成。
锁按引用计数保存，最后一个持有者退出时即移除。
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional
from uuid import UUID

from .schemas import Incident, IncidentStatus, Severity

logger = logging.getLogger(__name__)


class _KeyedLocks:
    """按键分配的 asyncio.Lock，无人持有或等待时释放"""

    def __init__(self) -> None:
        self._entries: dict[Hashable, list] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._entries[key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryIncidentRepository:
    """内存事件仓库"""

    def __init__(self) -> None:
        self._items: dict[UUID, Incident] = {}
        self._locks = _KeyedLocks()
        self._reporter_locks = _KeyedLocks()

    def lock(self, incident_id: UUID):
        return self._locks.hold(incident_id)

    def reporter_lock(self, reporter_id: str):
        return self._reporter_locks.hold(reporter_id)

    @property
    def held_locks(self) -> int:
        return len(self._locks) + len(self._reporter_locks)

    async def get(self, incident_id: UUID) -> Optional[Incident]:
        return self._items.get(incident_id)

    async def save(self, incident: Incident) -> Incident:
        self._items[incident.id] = incident
        return incident

    async def find_active_by_reporter(self, reporter_id: str) -> Optional[Incident]:
        for incident in self._items.values():
            if incident.reported_by == reporter_id and not incident.is_terminal:
                return incident
        return None

    async def list(
        self,
        page: int = 1,
        page_size: int = 20,
        status: Optional[IncidentStatus] = None,
        severity: Optional[Severity] = None,
    ) -> tuple[list[Incident], int]:
        """分页查询，按SOS时间倒序"""
        items = [
            i for i in self._items.values()
            if (status is None or i.status == status)
            and (severity is None or i.severity == severity)
        ]
        items.sort(key=lambda i: i.sos_triggered_at, reverse=True)
        start = (page - 1) * page_size
        return items[start:start + page_size], len(items)
