"""
异常定义

AppException 及其子类携带 {error_code, message, details}，由 main.py 注册的处理器转换为JSON响应。
DeliveryError 只在通知分发边界内使用，不会到达HTTP层。
"""
from fastapi import HTTPException
from typing import Optional, Any


class AppException(HTTPException):
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Any] = None,
    ):
        super().__init__(status_code=status_code, detail={
            "error_code": error_code,
            "message": message,
            "details": details,
        })
        self.error_code = error_code
        self.message = message


class NotFoundError(AppException):
    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            status_code=404,
            error_code=f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found: {resource_id}",
        )


class ConflictError(AppException):
    def __init__(self, error_code: str, message: str):
        super().__init__(
            status_code=409,
            error_code=error_code,
            message=message,
        )


class ValidationError(AppException):
    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(
            status_code=400,
            error_code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class InvalidStateError(AppException):
    """事件状态不允许该操作（终态事件、非法流转、槽位已占用）"""
    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(
            status_code=409,
            error_code="INCIDENT_INVALID_STATE",
            message=message,
            details={"current_status": current_status} if current_status else None,
        )


class DeliveryError(RuntimeError):
    """通知投递失败，只在通知边界内记录，不影响事件状态"""
    def __init__(self, channel: str, recipient_id: str, reason: str):
        super().__init__(f"{channel} -> {recipient_id}: {reason}")
        self.channel = channel
        self.recipient_id = recipient_id
        self.reason = reason
