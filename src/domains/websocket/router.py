"""
WebSocket 路由

连接地址: ws://host/api/v1/ws?client_id=xxx&user_id=xxx&incident_id=xxx

消息格式：
- 客户端发送: {"action": "subscribe|unsubscribe|ping|replay", "channels": [...], "last_msg_id": "..."}
- 服务端推送: {"id": "...", "channel": "...", "event_type": "...", "payload": {...}, "timestamp": "..."}
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from src.core.dependencies import get_connection_manager
from src.core.websocket import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    client_id: str = Query(..., description="客户端唯一标识"),
    user_id: Optional[str] = Query(None, description="响应者/上报人ID，用于定向推送邀约"),
    incident_id: Optional[UUID] = Query(None, description="追踪页面关注的事件ID"),
    last_msg_id: Optional[str] = Query(None, description="最后收到的消息ID（断线重连用）"),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """
    WebSocket连接端点

    支持的action:
    - subscribe / unsubscribe: 订阅频道
    - ping: 心跳
    - replay: 回放错过的消息

    支持的频道:
    - incidents: 事件创建/状态变化
    - offers: 派单邀约（另按user_id定向推送）
    - tracking: 资源位置更新
    - alerts: 危重事件告警
    """
    await manager.connect(websocket, client_id, user_id=user_id, incident_id=incident_id)

    if last_msg_id:
        await manager.replay_messages(client_id, last_msg_id)

    try:
        while True:
            data = await websocket.receive_json()
            action = data.get("action")

            if action == "subscribe":
                subscribed = await manager.subscribe(client_id, data.get("channels", []))
                await websocket.send_json({"type": "subscribed", "channels": subscribed})

            elif action == "unsubscribe":
                unsubscribed = await manager.unsubscribe(client_id, data.get("channels", []))
                await websocket.send_json({"type": "unsubscribed", "channels": unsubscribed})

            elif action == "ping":
                await manager.heartbeat(client_id)

            elif action == "replay":
                msg_id = data.get("last_msg_id")
                if msg_id:
                    count = await manager.replay_messages(client_id, msg_id)
                    await websocket.send_json({"type": "replay_complete", "replayed_count": count})

            else:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        manager.disconnect(client_id)
    except Exception as e:
        logger.error(f"WebSocket error for {client_id}: {e}")
        manager.disconnect(client_id)
