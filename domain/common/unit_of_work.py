"""Unit of Work 抽象：一次存储调用对应一个事务边界"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from domain.chat.repository import MessageRepository


class AbstractUnitOfWork(ABC):
    """
    ``async with uow:`` 正常退出时提交（只读模式除外），异常退出时回滚。
    仓储只在上下文内可用。
    """

    message_repository: Optional[MessageRepository]

    def __init__(self, *, readonly: bool = False) -> None:
        self.readonly = readonly
        self._done = False
        self.message_repository = None

    async def __aenter__(self) -> "AbstractUnitOfWork":
        self._done = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.rollback()
        elif not self._done and not self.readonly:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
