"""
外部 REST API 客户端基础设施（推送服务等复用）
"""
from .base import BaseAPIClient, APIResponse, APIError, ServerError, RateLimitError

__all__ = [
    "BaseAPIClient",
    "APIResponse",
    "APIError",
    "ServerError",
    "RateLimitError",
]
