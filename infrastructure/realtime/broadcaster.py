"""Room broadcaster: fan-out of one event to a room's current members.

Membership is read from the ConnectionRegistry at send time, so the
recipients (and the onlineUsers payload) always reflect the registry
as it is when the broadcast runs.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from application.ports.realtime import Envelope, ConnectionSenderPort
from domain.chat.entity import format_timestamp
from domain.common.exceptions import ConnectionGoneException
from infrastructure.realtime.registry import ConnectionRegistry
from core.logging_config import get_logger


logger = get_logger(__name__)

SYSTEM_USERNAME = "System"


class RoomBroadcaster:
    def __init__(self, *, registry: ConnectionRegistry, sender: ConnectionSenderPort) -> None:
        self._registry = registry
        self._sender = sender

    async def broadcast(
        self,
        room: str,
        event: str,
        payload: Any,
        *,
        exclude: Optional[str] = None,
    ) -> int:
        """Deliver ``payload`` to every member of ``room`` except ``exclude``.

        Returns the number of connections the frame was queued for;
        connections that are gone are skipped without error.
        """
        members = self._registry.members_of(room)
        return await self._fanout(room, members, Envelope(type=event, room=room, data=payload), exclude=exclude)

    async def _fanout(self, room: str, members, envelope: Envelope, *, exclude: Optional[str] = None) -> int:
        delivered = 0
        for member in members:
            if exclude is not None and member.connection_id == exclude:
                continue
            if await self._deliver(member.connection_id, envelope):
                delivered += 1
        logger.debug("room_broadcast", room=room, event_type=envelope.type, members=len(members), delivered=delivered)
        return delivered

    async def send_to(self, connection_id: str, event: str, payload: Any, *, room: Optional[str] = None) -> bool:
        return await self._deliver(connection_id, Envelope(type=event, room=room, data=payload))

    async def _deliver(self, connection_id: str, envelope: Envelope) -> bool:
        try:
            return await self._sender.send(connection_id, envelope)
        except ConnectionGoneException:
            # registered but no longer reachable: skip
            logger.debug("ws_send_skipped_gone", connection_id=connection_id, event_type=envelope.type)
            return False

    async def broadcast_system(self, room: str, text: str) -> int:
        return await self.broadcast(
            room,
            "message",
            {
                "username": SYSTEM_USERNAME,
                "message": text,
                "timestamp": format_timestamp(datetime.now(timezone.utc)),
                "isSystem": True,
            },
        )

    async def broadcast_online_users(self, room: str) -> int:
        members = self._registry.members_of(room)
        users = [m.to_online_user() for m in members]
        return await self._fanout(room, members, Envelope(type="onlineUsers", room=room, data=users))
