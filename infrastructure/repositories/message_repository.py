"""
消息仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.chat.entity import ChatMessage
from domain.chat.repository import MessageRepository
from infrastructure.models.message import MessageModel


class SQLAlchemyMessageRepository(MessageRepository):
    """消息仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: MessageModel) -> ChatMessage:
        """将数据库模型转换为领域实体"""
        ts = model.timestamp
        # SQLite 不保存时区信息，读回时统一视为 UTC
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ChatMessage(
            id=model.id,
            room=model.room,
            username=model.username,
            body=model.body,
            timestamp=ts,
        )

    async def append(self, room: str, username: str, body: str) -> ChatMessage:
        """写入消息，时间戳在此处分配"""
        db_message = MessageModel(
            room=room,
            username=username,
            body=body,
            timestamp=datetime.now(timezone.utc),
        )
        self.session.add(db_message)
        await self.session.flush()  # 获取生成的ID
        return self._to_entity(db_message)

    async def recent(self, room: str, limit: int) -> List[ChatMessage]:
        """取最近 limit 条（时间倒序 + ID倒序），再翻转为正序"""
        if limit <= 0:
            return []
        query = (
            select(MessageModel)
            .where(MessageModel.room == room)
            .order_by(MessageModel.timestamp.desc(), MessageModel.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        db_messages = result.scalars().all()
        return [self._to_entity(m) for m in reversed(db_messages)]
