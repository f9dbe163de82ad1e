"""
统一响应信封 ``{code, message, data, error}``，HTTP 接口统一使用
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from domain.chat.entity import format_timestamp
from shared.codes import BusinessCode


T = TypeVar("T")


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def _serialize_timestamp(self, timestamp: datetime) -> str:
        return format_timestamp(timestamp)


class Response(BaseModel, Generic[T]):
    code: int = BusinessCode.SUCCESS
    message: str = "Success"
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


def success_response(data: Any = None, message: str = "Success") -> Response:
    return Response(code=BusinessCode.SUCCESS, message=message, data=data)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Response:
    """构造错误信封；``data`` 始终为空"""
    return Response(
        code=int(code),
        message=message,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )
