"""
业务状态码：HTTP 响应信封中的 ``code`` 字段与领域异常共用同一套定义。
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # 请求参数 / 事件负载 (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # 资源 (2xxxx)
    NOT_FOUND = 20006

    # 实时通信 (25xxx)
    CONNECTION_GONE = 25001
    PUSH_DELIVERY_ERROR = 25002

    # 系统 (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    SERVICE_UNAVAILABLE = 40003

    # 限流 (5xxxx)
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
