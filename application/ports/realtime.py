"""
Realtime port and message DTOs (contracts-first).

This module defines the outbound frame envelope and the protocol the
room broadcaster uses to reach individual connections, so the
application layer stays decoupled from the concrete WebSocket handling
(infrastructure).
"""
from __future__ import annotations

from typing import Any, Protocol
from pydantic import BaseModel, Field
from datetime import datetime, timezone


def _utc_now_z() -> str:
    ts = datetime.now(timezone.utc)
    s = ts.isoformat()
    return s.replace("+00:00", "Z")


class Envelope(BaseModel):
    """Unified WS frame passed from the server to clients.

    Fields:
      - type: event name (chatHistory/message/onlineUsers/userTyping/ping/pong)
      - room: optional room the event belongs to
      - data: payload (JSON-serializable; object or list depending on event)
      - ts: server-generated UTC timestamp (ISO8601 with Z)
    """

    type: str
    room: str | None = None
    data: Any = Field(default_factory=dict)
    ts: str = Field(default_factory=_utc_now_z)


class ConnectionSenderPort(Protocol):
    """Per-connection delivery used by the room broadcaster.

    Raises ConnectionGoneException when the connection is unknown or
    already closed; returns False when the frame was dropped by the
    connection's overflow policy.
    """

    async def send(self, connection_id: str, envelope: Envelope) -> bool: ...


__all__ = ["Envelope", "ConnectionSenderPort"]
