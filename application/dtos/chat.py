"""Inbound WebSocket event payloads."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _InboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterPushTokenEvent(_InboundEvent):
    push_token: str = Field(alias="pushToken", min_length=1)


class JoinRoomEvent(_InboundEvent):
    username: str | None = None
    room: str | None = None


class SendMessageEvent(_InboundEvent):
    username: str | None = None
    room: str | None = None
    message: str = Field(min_length=1)


class TypingEvent(_InboundEvent):
    username: str | None = None
    room: str | None = None
    is_typing: bool = Field(default=False, alias="isTyping")
