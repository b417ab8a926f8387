"""
通知投递通道

- WebSocketChannel: 推送给在线用户（实时通道）
- PushGatewayChannel: 经 HTTP 网关发送推送/邮件
- NotificationDispatcher: 将一条消息分发到所有通道，
  投递失败只记录告警，不向调用方抛出
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional, Protocol
from uuid import UUID

import httpx

from src.core.exceptions import DeliveryError
from src.core.websocket import ConnectionManager
from .schemas import DeliveryOutcome, NotificationKind, NotificationMessage, Recipient

logger = logging.getLogger(__name__)

_OFFER_KINDS = {NotificationKind.volunteer_offer, NotificationKind.donor_offer}


class DeliveryChannel(Protocol):
    name: str

    async def deliver(self, recipient: Recipient, message: NotificationMessage) -> DeliveryOutcome:
        """投递一条消息，失败时抛出 DeliveryError"""
        ...


class WebSocketChannel:
    """在线用户实时推送"""

    name = "websocket"

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def deliver(self, recipient: Recipient, message: NotificationMessage) -> DeliveryOutcome:
        if not recipient.id or not self._manager.is_online(recipient.id):
            return DeliveryOutcome(channel=self.name, recipient=recipient.label, delivered=False, error="offline")

        channel = "offers" if message.kind in _OFFER_KINDS else "alerts"
        sent = await self._manager.send_to_user(recipient.id, channel, message.kind.value, message.payload())
        if sent == 0:
            raise DeliveryError(self.name, recipient.label, "所有连接发送失败")
        return DeliveryOutcome(channel=self.name, recipient=recipient.label, delivered=True)


class PushGatewayChannel:
    """
    推送/邮件网关 HTTP 客户端

    mode="push" 按 fcm_token 发送，mode="email" 按邮箱发送；
    接收方缺少对应地址时跳过
    """

    def __init__(
        self,
        base_url: str,
        mode: str = "push",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if mode not in ("push", "email"):
            raise ValueError(f"不支持的网关模式: {mode}")
        self.name = mode
        self._base_url = base_url.rstrip("/")
        self._mode = mode
        self._timeout = httpx.Timeout(timeout, connect=timeout)
        self._transport = transport

    def _address(self, recipient: Recipient) -> Optional[str]:
        return recipient.fcm_token if self._mode == "push" else recipient.email

    async def deliver(self, recipient: Recipient, message: NotificationMessage) -> DeliveryOutcome:
        address = self._address(recipient)
        if not address:
            return DeliveryOutcome(channel=self.name, recipient=recipient.label, delivered=False, error="no_address")

        body: dict[str, Any] = {
            "to": address,
            "title": message.title,
            "body": message.body,
            "priority": message.priority,
            "data": {**message.data, "kind": message.kind.value,
                     "incident_id": str(message.incident_id) if message.incident_id else None},
        }
        path = f"/{self._mode}"
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                trust_env=False,
            ) as client:
                resp = await client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise DeliveryError(self.name, recipient.label, f"请求失败: {exc}") from exc

        if resp.status_code >= 400:
            raise DeliveryError(self.name, recipient.label, f"HTTP {resp.status_code}: {resp.text[:200]}")

        return DeliveryOutcome(channel=self.name, recipient=recipient.label, delivered=True)


class NotificationDispatcher:
    """多通道分发"""

    def __init__(
        self,
        channels: Iterable[DeliveryChannel],
        realtime: Optional[ConnectionManager] = None,
    ) -> None:
        self._channels = list(channels)
        self._realtime = realtime

    async def notify(self, recipient: Recipient, message: NotificationMessage) -> list[DeliveryOutcome]:
        outcomes: list[DeliveryOutcome] = []
        for channel in self._channels:
            try:
                outcomes.append(await channel.deliver(recipient, message))
            except DeliveryError as e:
                logger.warning(f"通知投递失败: channel={e.channel}, recipient={e.recipient_id}, reason={e.reason}")
                outcomes.append(DeliveryOutcome(
                    channel=e.channel, recipient=e.recipient_id, delivered=False, error=e.reason,
                ))
        return outcomes

    async def notify_many(
        self,
        recipients: Iterable[Recipient],
        message: NotificationMessage,
    ) -> list[list[DeliveryOutcome]]:
        """同时通知多个接收方"""
        return list(await asyncio.gather(*(self.notify(r, message) for r in recipients)))

    async def publish(
        self,
        event_type: str,
        payload: dict[str, Any],
        incident_id: Optional[UUID] = None,
        channel: str = "incidents",
    ) -> int:
        """实时频道广播，未配置实时通道时为空操作"""
        if self._realtime is None:
            return 0
        return await self._realtime.broadcast_to_channel(channel, event_type, payload, incident_id=incident_id)


__all__ = [
    "DeliveryChannel",
    "WebSocketChannel",
    "PushGatewayChannel",
    "NotificationDispatcher",
]
