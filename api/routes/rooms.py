"""
房间API路由 - 历史消息与在线用户查询
"""
from typing import List

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from application.services.message_store import MessageStore
from api.dependencies import get_connection_registry, get_message_store
from core.response import success_response, Response as ApiResponse
from domain.chat.entity import format_timestamp
from infrastructure.realtime.registry import ConnectionRegistry


router = APIRouter(
    prefix="/rooms",
    tags=["房间"]
)


class ChatMessageDTO(BaseModel):
    username: str
    room: str
    message: str
    timestamp: str


class OnlineUserDTO(BaseModel):
    username: str
    room: str
    connectionId: str


class RoomSummaryDTO(BaseModel):
    room: str
    online: int = Field(..., ge=0)


@router.get("", summary="活跃房间列表", response_model=ApiResponse[List[RoomSummaryDTO]])
async def list_rooms(registry: ConnectionRegistry = Depends(get_connection_registry)):
    """当前至少有一名成员的房间及在线人数"""
    rooms = [RoomSummaryDTO(room=name, online=count) for name, count in sorted(registry.rooms().items())]
    return success_response(data=rooms)


@router.get("/{room}/messages", summary="房间历史消息", response_model=ApiResponse[List[ChatMessageDTO]])
async def room_messages(
    room: str = Path(..., min_length=1),
    limit: int = Query(50, ge=1, le=50, description="返回最近的消息条数"),
    store: MessageStore = Depends(get_message_store),
):
    """
    按时间正序返回房间最近的消息

    - **limit**: 1..50，默认 50
    """
    messages = await store.recent(room, limit)
    data = [
        ChatMessageDTO(
            username=m.username,
            room=m.room,
            message=m.body,
            timestamp=format_timestamp(m.timestamp),
        )
        for m in messages
    ]
    return success_response(data=data)


@router.get("/{room}/users", summary="房间在线用户", response_model=ApiResponse[List[OnlineUserDTO]])
async def room_users(
    room: str = Path(..., min_length=1),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    users = [OnlineUserDTO(**m.to_online_user()) for m in registry.members_of(room)]
    return success_response(data=users)
