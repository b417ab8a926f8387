"""
WebSocket 连接管理器

功能：
- 连接管理（连接/断开/心跳）
- 频道订阅（incidents/offers/tracking/alerts）
- 消息广播（单播/事件组播/频道广播）
- 断线重连支持（消息回放）

由应用生命周期显式创建，作为实时通道注入通知模块。
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID
from dataclasses import dataclass, field
from collections import defaultdict
from fastapi import WebSocket

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WSMessage:
    """WebSocket消息"""
    id: str
    channel: str
    event_type: str
    payload: dict
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": self.channel,
            "event_type": self.event_type,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class WSConnection:
    """WebSocket连接"""
    websocket: WebSocket
    client_id: str
    user_id: Optional[str] = None
    incident_id: Optional[UUID] = None
    subscribed_channels: set = field(default_factory=set)
    last_heartbeat: datetime = field(default_factory=_utcnow)
    last_msg_id: Optional[str] = None


class ConnectionManager:
    """WebSocket连接管理器"""

    # 支持的频道
    CHANNELS = {
        "incidents",    # 事件创建/状态变化
        "offers",       # 派单邀约
        "tracking",     # 位置追踪
        "alerts",       # 告警通知
    }

    def __init__(self, max_history_size: int = 1000):
        # client_id -> WSConnection
        self.connections: dict[str, WSConnection] = {}
        # user_id -> set of client_ids（响应者/上报人可多端在线）
        self.user_connections: dict[str, set[str]] = defaultdict(set)
        # incident_id -> set of client_ids（追踪页面）
        self.incident_connections: dict[UUID, set[str]] = defaultdict(set)
        # channel -> set of client_ids
        self.channel_subscriptions: dict[str, set[str]] = defaultdict(set)
        # 消息历史（用于断线重连回放）
        self.message_history: list[WSMessage] = []
        self.max_history_size = max_history_size
        self._msg_counter = 0

    async def connect(
        self,
        websocket: WebSocket,
        client_id: str,
        user_id: Optional[str] = None,
        incident_id: Optional[UUID] = None,
    ) -> WSConnection:
        """建立连接"""
        await websocket.accept()

        conn = WSConnection(
            websocket=websocket,
            client_id=client_id,
            user_id=user_id,
            incident_id=incident_id,
        )
        self.connections[client_id] = conn

        if user_id:
            self.user_connections[user_id].add(client_id)
        if incident_id:
            self.incident_connections[incident_id].add(client_id)

        logger.info(f"WebSocket connected: {client_id}, user: {user_id}, incident: {incident_id}")

        await self._send(websocket, {
            "type": "connected",
            "client_id": client_id,
            "incident_id": str(incident_id) if incident_id else None,
            "available_channels": sorted(self.CHANNELS),
        })

        return conn

    def disconnect(self, client_id: str):
        """断开连接"""
        conn = self.connections.pop(client_id, None)
        if conn:
            if conn.user_id:
                self.user_connections[conn.user_id].discard(client_id)
            if conn.incident_id:
                self.incident_connections[conn.incident_id].discard(client_id)
            for channel in conn.subscribed_channels:
                self.channel_subscriptions[channel].discard(client_id)
            logger.info(f"WebSocket disconnected: {client_id}")

    async def subscribe(self, client_id: str, channels: list[str]) -> list[str]:
        """订阅频道"""
        conn = self.connections.get(client_id)
        if not conn:
            return []

        subscribed = []
        for channel in channels:
            if channel in self.CHANNELS:
                conn.subscribed_channels.add(channel)
                self.channel_subscriptions[channel].add(client_id)
                subscribed.append(channel)

        logger.info(f"Client {client_id} subscribed to: {subscribed}")
        return subscribed

    async def unsubscribe(self, client_id: str, channels: list[str]) -> list[str]:
        """取消订阅"""
        conn = self.connections.get(client_id)
        if not conn:
            return []

        unsubscribed = []
        for channel in channels:
            if channel in conn.subscribed_channels:
                conn.subscribed_channels.discard(channel)
                self.channel_subscriptions[channel].discard(client_id)
                unsubscribed.append(channel)

        return unsubscribed

    async def broadcast_to_channel(
        self,
        channel: str,
        event_type: str,
        payload: dict,
        incident_id: Optional[UUID] = None,
    ) -> int:
        """向频道广播消息，返回送达的连接数"""
        msg = self._create_message(channel, event_type, payload)
        self._add_to_history(msg)

        client_ids = set(self.channel_subscriptions.get(channel, set()))

        # 指定incident_id时，同时推送给该事件的追踪页面
        if incident_id:
            client_ids |= self.incident_connections.get(incident_id, set())

        sent = 0
        for client_id in client_ids:
            if await self._send_to_client(client_id, msg):
                sent += 1
        return sent

    async def send_to_user(
        self,
        user_id: str,
        channel: str,
        event_type: str,
        payload: dict,
    ) -> int:
        """向指定用户的所有在线连接发送消息，返回送达的连接数"""
        msg = self._create_message(channel, event_type, payload)
        sent = 0
        for client_id in list(self.user_connections.get(user_id, set())):
            if await self._send_to_client(client_id, msg):
                sent += 1
        return sent

    def is_online(self, user_id: str) -> bool:
        return bool(self.user_connections.get(user_id))

    async def replay_messages(self, client_id: str, last_msg_id: str) -> int:
        """回放错过的消息（断线重连）"""
        conn = self.connections.get(client_id)
        if not conn:
            return 0

        replay_start = False
        replayed = 0

        for msg in self.message_history:
            if replay_start:
                if msg.channel in conn.subscribed_channels:
                    await self._send_to_client(client_id, msg)
                    replayed += 1
            elif msg.id == last_msg_id:
                replay_start = True

        logger.info(f"Replayed {replayed} messages to {client_id}")
        return replayed

    async def heartbeat(self, client_id: str):
        """心跳更新"""
        conn = self.connections.get(client_id)
        if conn:
            conn.last_heartbeat = _utcnow()
            await self._send(conn.websocket, {"type": "pong"})

    async def close_all(self):
        """关闭全部连接（应用退出时调用）"""
        for client_id, conn in list(self.connections.items()):
            try:
                await conn.websocket.close()
            except RuntimeError as e:
                logger.debug(f"Close {client_id} skipped: {e}")
            self.disconnect(client_id)

    def _create_message(self, channel: str, event_type: str, payload: dict) -> WSMessage:
        """创建消息"""
        self._msg_counter += 1
        return WSMessage(
            id=f"msg_{self._msg_counter}_{_utcnow().timestamp()}",
            channel=channel,
            event_type=event_type,
            payload=payload,
        )

    def _add_to_history(self, msg: WSMessage):
        """添加到消息历史"""
        self.message_history.append(msg)
        if len(self.message_history) > self.max_history_size:
            self.message_history = self.message_history[-self.max_history_size:]

    async def _send_to_client(self, client_id: str, msg: WSMessage) -> bool:
        """发送消息给客户端"""
        conn = self.connections.get(client_id)
        if not conn:
            return False
        try:
            await self._send(conn.websocket, msg.to_dict())
            conn.last_msg_id = msg.id
            return True
        except Exception as e:
            logger.error(f"Failed to send to {client_id}: {e}")
            self.disconnect(client_id)
            return False

    async def _send(self, websocket: WebSocket, data: dict):
        """发送JSON数据"""
        await websocket.send_json(data)
