"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class ChatValidationException(BusinessException):
    """A single inbound event is malformed or inconsistent with its session."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
        )


class StoreUnavailableException(BusinessException):
    """The message store could not be reached (or timed out)."""

    def __init__(self, operation: str, *, reason: str | None = None):
        details = {"operation": operation}
        if reason:
            details["reason"] = reason
        super().__init__(
            code=BusinessCode.DATABASE_ERROR,
            message=f"Message store unavailable during {operation}",
            error_type="StoreUnavailable",
            details=details,
        )


class DeliveryException(BusinessException):
    """A push batch was rejected or could not be submitted."""

    def __init__(self, message: str, *, batch_size: int, details: Optional[dict] = None):
        full_details = {"batch_size": batch_size}
        if details:
            full_details.update(details)
        super().__init__(
            code=BusinessCode.PUSH_DELIVERY_ERROR,
            message=message,
            error_type="DeliveryError",
            details=full_details,
        )


class ConnectionGoneException(BusinessException):
    def __init__(self, connection_id: str):
        super().__init__(
            code=BusinessCode.CONNECTION_GONE,
            message="Connection is no longer reachable",
            error_type="ConnectionGone",
            details={"connection_id": connection_id},
        )

