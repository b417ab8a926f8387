"""
通知与派单邀约模块
"""

from .channels import NotificationDispatcher, PushGatewayChannel, WebSocketChannel
from .fanout import NotificationFanout
from .schemas import DeliveryOutcome, DispatchOffer, NotificationKind, NotificationMessage, OfferStatus, Recipient

__all__ = [
    "NotificationDispatcher",
    "PushGatewayChannel",
    "WebSocketChannel",
    "NotificationFanout",
    "DeliveryOutcome",
    "DispatchOffer",
    "NotificationKind",
    "NotificationMessage",
    "OfferStatus",
    "Recipient",
]
