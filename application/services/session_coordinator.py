"""Application service for the room chat protocol.

Orchestrates the connection registry, the message store, the room
broadcaster and the notification dispatcher for each inbound event of
a connection:

    connect -> registerPushToken* -> joinRoom -> (sendMessage | typing | joinRoom)* -> disconnect

Ordering guarantees:
  - a membership change (join/disconnect) and the system message plus
    onlineUsers broadcast that follow it run under one lock, so another
    join/leave cannot slip in between and onlineUsers always matches the
    registry at the moment it is sent;
  - a chat message is broadcast only after the store has persisted it,
    carrying the store-assigned timestamp;
  - push dispatch runs in its own task and never gates the broadcast.

Switching rooms is join-only: the old room gets neither a leave message
nor a refreshed onlineUsers list.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Set

from pydantic import BaseModel, ValidationError

from application.dtos.chat import (
    JoinRoomEvent,
    RegisterPushTokenEvent,
    SendMessageEvent,
    TypingEvent,
)
from application.ports.chat import MessageStorePort
from application.services.notification_dispatcher import NotificationDispatcher
from domain.chat.entity import ChatMessage, format_timestamp, require_text
from domain.common.exceptions import (
    BusinessException,
    ChatValidationException,
    StoreUnavailableException,
)
from infrastructure.realtime.broadcaster import RoomBroadcaster
from infrastructure.realtime.registry import ConnectionRegistry
from core.logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class SessionCoordinator:
    def __init__(
        self,
        *,
        registry: ConnectionRegistry,
        broadcaster: RoomBroadcaster,
        store: MessageStorePort,
        dispatcher: Optional[NotificationDispatcher] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        strict_identity: bool = True,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._store = store
        self._dispatcher = dispatcher
        self._history_limit = history_limit
        self._strict_identity = strict_identity
        self._membership_lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()
        self._handlers: Dict[str, tuple[type[BaseModel], Callable[[str, Any], Awaitable[None]]]] = {
            "registerPushToken": (RegisterPushTokenEvent, self._on_register_push_token),
            "joinRoom": (JoinRoomEvent, self._on_join_room),
            "sendMessage": (SendMessageEvent, self._on_send_message),
            "typing": (TypingEvent, self._on_typing),
        }

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    # -------------------- Handler boundary --------------------
    async def handle_event(self, connection_id: str, message: dict) -> bool:
        """Route one inbound frame. Never raises; returns False if rejected."""
        event_type = str(message.get("type") or "")
        entry = self._handlers.get(event_type)
        if entry is None:
            logger.warning("ws_unknown_event", connection_id=connection_id, type=event_type)
            return False
        model, handler = entry
        fields = message.get("data") if isinstance(message.get("data"), dict) else message
        try:
            try:
                event = model.model_validate(fields)
            except ValidationError as exc:
                first = exc.errors()[0] if exc.errors() else {}
                field = ".".join(str(loc) for loc in first.get("loc", ()))
                raise ChatValidationException(
                    f"invalid {event_type} payload: {first.get('msg', 'unknown')}",
                    field=field or None,
                ) from exc
            await handler(connection_id, event)
            return True
        except ChatValidationException as exc:
            logger.warning(
                "ws_event_rejected",
                connection_id=connection_id,
                type=event_type,
                reason=exc.message,
                field=exc.field,
            )
        except BusinessException as exc:
            logger.error(
                "ws_event_failed",
                connection_id=connection_id,
                type=event_type,
                error_type=exc.error_type,
                error=exc.message,
            )
        except Exception as exc:
            logger.error(
                "ws_event_error",
                connection_id=connection_id,
                type=event_type,
                error=str(exc),
                exc_info=True,
            )
        return False

    async def _on_register_push_token(self, connection_id: str, event: RegisterPushTokenEvent) -> None:
        await self.register_push_token(connection_id, event.push_token)

    async def _on_join_room(self, connection_id: str, event: JoinRoomEvent) -> None:
        await self.join_room(connection_id, event.username, event.room)

    async def _on_send_message(self, connection_id: str, event: SendMessageEvent) -> None:
        await self.send_message(connection_id, event.username, event.room, event.message)

    async def _on_typing(self, connection_id: str, event: TypingEvent) -> None:
        await self.typing(connection_id, event.username, event.room, event.is_typing)

    # -------------------- Use cases --------------------
    async def connect(self, connection_id: str) -> None:
        self._registry.create(connection_id)
        logger.info("session_opened", connection_id=connection_id)

    async def register_push_token(self, connection_id: str, token: str) -> None:
        token = require_text(token, "pushToken")
        self._registry.upsert(connection_id, push_token=token)
        logger.info("push_token_registered", connection_id=connection_id)

    async def join_room(self, connection_id: str, username: Optional[str], room: Optional[str]) -> None:
        username = require_text(username, "username")
        room = require_text(room, "room")

        async with self._membership_lock:
            previous = self._registry.get(connection_id)
            self._registry.upsert(connection_id, username=username, room=room)

        if previous is not None and previous.room and previous.room != room:
            logger.info("room_switched", connection_id=connection_id, from_room=previous.room, to_room=room)

        await self._deliver_history(connection_id, room)

        async with self._membership_lock:
            await self._broadcaster.broadcast_system(room, f"{username} has joined the room")
            await self._broadcaster.broadcast_online_users(room)

        logger.info("room_joined", connection_id=connection_id, username=username, room=room)

    async def send_message(
        self,
        connection_id: str,
        username: Optional[str],
        room: Optional[str],
        body: str,
    ) -> Optional[ChatMessage]:
        username = require_text(username, "username")
        room = require_text(room, "room")
        if not body:
            raise ChatValidationException("message is required", field="message")
        self._ensure_identity(connection_id, username, room)

        try:
            message = await self._store.append(room, username, body)
        except StoreUnavailableException as exc:
            logger.error(
                "message_not_persisted",
                connection_id=connection_id,
                room=room,
                username=username,
                error=exc.message,
            )
            return None

        await self._broadcaster.broadcast(
            room,
            "message",
            {
                "username": message.username,
                "message": message.body,
                "timestamp": format_timestamp(message.timestamp),
            },
        )
        logger.info("message_sent", room=room, username=username, message_id=message.id)

        if self._dispatcher is not None:
            self._spawn(self._dispatcher.dispatch(room, username, body), name=f"push:{room}")
        return message

    async def typing(
        self,
        connection_id: str,
        username: Optional[str],
        room: Optional[str],
        is_typing: bool,
    ) -> None:
        username = require_text(username, "username")
        room = require_text(room, "room")
        self._ensure_identity(connection_id, username, room)
        await self._broadcaster.broadcast(
            room,
            "userTyping",
            {"username": username, "isTyping": bool(is_typing)},
            exclude=connection_id,
        )

    async def disconnect(self, connection_id: str) -> None:
        async with self._membership_lock:
            session = self._registry.remove(connection_id)
            if session is None or not session.has_joined:
                logger.info("session_closed", connection_id=connection_id, joined=False)
                return
            await self._broadcaster.broadcast_system(session.room, f"{session.username} has left the room")
            await self._broadcaster.broadcast_online_users(session.room)
        logger.info(
            "session_closed",
            connection_id=connection_id,
            joined=True,
            username=session.username,
            room=session.room,
        )

    async def aclose(self) -> None:
        """Wait for in-flight push dispatches (used at shutdown and in tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------- Helpers --------------------
    async def _deliver_history(self, connection_id: str, room: str) -> None:
        try:
            history = await self._store.recent(room, self._history_limit)
        except StoreUnavailableException as exc:
            logger.error("chat_history_unavailable", connection_id=connection_id, room=room, error=exc.message)
            return
        await self._broadcaster.send_to(
            connection_id,
            "chatHistory",
            [m.to_payload() for m in history if m.room == room],
            room=room,
        )

    def _ensure_identity(self, connection_id: str, username: str, room: str) -> None:
        if not self._strict_identity:
            return
        session = self._registry.get(connection_id)
        if session is None or session.room != room or session.username != username:
            raise ChatValidationException(
                "event does not match the connection's joined room/username",
                details={
                    "room": room,
                    "username": username,
                    "joined_room": session.room if session else None,
                },
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_task_failed", error=str(exc))
