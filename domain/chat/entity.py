"""
聊天领域实体 - 连接会话与聊天消息
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import ChatValidationException


@dataclass
class ConnectionSession:
    """Per-connection mutable state tracked by the connection registry."""

    connection_id: str
    username: Optional[str] = None
    room: Optional[str] = None
    push_token: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_joined(self) -> bool:
        return self.room is not None

    def to_online_user(self) -> dict:
        return {
            "username": self.username,
            "room": self.room,
            "connectionId": self.connection_id,
        }


@dataclass(frozen=True)
class ChatMessage:
    """持久化后的聊天消息，timestamp 由存储层在写入时分配"""

    id: Optional[int]
    room: str
    username: str
    body: str
    timestamp: datetime

    def to_payload(self) -> dict:
        return {
            "username": self.username,
            "room": self.room,
            "message": self.body,
            "timestamp": format_timestamp(self.timestamp),
        }


def format_timestamp(ts: datetime) -> str:
    """UTC ISO8601，统一使用 Z 结尾"""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


def require_text(value: Optional[str], field_name: str) -> str:
    """业务规则：必填字段去除首尾空白后不能为空"""
    if value is None or not str(value).strip():
        raise ChatValidationException(f"{field_name} is required", field=field_name)
    return str(value).strip()


def mask_token(token: Optional[str]) -> Optional[str]:
    """日志中只保留推送令牌的前缀"""
    if not token:
        return token
    visible = token.find("[") + 1 + 4
    if len(token) <= visible:
        return "***"
    return token[:visible] + "***"
