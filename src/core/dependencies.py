"""
FastAPI 依赖注入

服务实例在应用生命周期中创建并挂到 app.state，这里只负责取出
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request, WebSocket

from .websocket import ConnectionManager

if TYPE_CHECKING:
    from src.domains.incidents.service import IncidentService


def get_incident_service(request: Request) -> "IncidentService":
    return request.app.state.incident_service


def get_connection_manager(websocket: WebSocket) -> ConnectionManager:
    return websocket.app.state.connection_manager
