"""
聊天消息仓储接口 - 定义数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import List
from .entity import ChatMessage


class MessageRepository(ABC):
    """消息仓储抽象接口 - 只追加，不修改"""

    @abstractmethod
    async def append(self, room: str, username: str, body: str) -> ChatMessage:
        """写入一条消息并分配权威时间戳"""
        pass

    @abstractmethod
    async def recent(self, room: str, limit: int) -> List[ChatMessage]:
        """获取房间最近 limit 条消息（按时间正序返回）"""
        pass
