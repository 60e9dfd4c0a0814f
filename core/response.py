"""
统一响应格式定义

Every route answers ``{code, message, data, error}``; payment providers only
look at the HTTP status, so the envelope is for the storefront frontend.
"""
from typing import Any, Optional, Generic, TypeVar
from pydantic import BaseModel, Field, field_serializer
from datetime import datetime, timezone
from shared.codes import BusinessCode


T = TypeVar("T")


class ErrorDetail(BaseModel):
    """错误详情（details 中可包含逐项的结账校验错误）"""
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer('timestamp')
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """UTC ISO8601，统一使用 Z 结尾"""
        ts = timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class Response(BaseModel, Generic[T]):
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


def success_response(
    data: Any = None,
    message: str = "Success",
    code: int = BusinessCode.SUCCESS
) -> Response:
    return Response(code=code, message=message, data=data, error=None)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None
) -> Response:
    """
    创建错误响应

    Args:
        code: 业务状态码（BusinessCode 或 PaymentCode）
        message: 错误消息
        error_type: 异常类型名，如 SignatureInvalid / ValidationError
        details: 错误详情
        field: 错误字段
        request_id: 请求ID
    """
    return Response(
        code=code,
        message=message,
        data=None,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )
