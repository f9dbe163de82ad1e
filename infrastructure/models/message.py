"""
聊天消息数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from datetime import datetime, timezone

from .base import Base


class MessageModel(Base):
    """
    聊天消息数据库模型

    只追加：写入后不再更新；timestamp 在写入时生成，是房间内的排序键
    """
    __tablename__ = "messages"

    # 主键（自增，用于同一时间戳下的插入顺序）
    id = Column(Integer, primary_key=True, index=True)

    room = Column(String(100), index=True, nullable=False, comment="房间名")
    username = Column(String(100), nullable=False, comment="发送者")
    body = Column(Text, nullable=False, comment="消息内容")

    timestamp = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="写入时间"
    )

    __table_args__ = (
        Index("ix_messages_room_timestamp", "room", "timestamp"),
    )

    def __repr__(self):
        return f"<MessageModel(id={self.id}, room='{self.room}', username='{self.username}')>"
