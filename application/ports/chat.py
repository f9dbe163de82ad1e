"""
Chat collaborator ports: the message store and the push transport.

The session coordinator and notification dispatcher only depend on
these protocols; SQLAlchemy and the Expo HTTP client live behind them.
"""
from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from domain.chat.entity import ChatMessage


@runtime_checkable
class MessageStorePort(Protocol):
    """Durable append-only message log.

    Both methods raise StoreUnavailableException on connectivity loss or
    timeout.
    """

    async def append(self, room: str, username: str, body: str) -> ChatMessage: ...

    async def recent(self, room: str, limit: int) -> list[ChatMessage]: ...


class PushMessage(BaseModel):
    to: str
    title: str | None = None
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    sound: str | None = "default"


@runtime_checkable
class PushTransportPort(Protocol):
    """Push delivery provider.

    ``send_batch`` raises DeliveryException for a failed batch; batches
    are independent of each other.
    """

    max_batch_size: int

    def is_valid_token(self, token: str) -> bool: ...

    async def send_batch(self, batch: Sequence[PushMessage]) -> None: ...


__all__ = ["MessageStorePort", "PushMessage", "PushTransportPort"]
