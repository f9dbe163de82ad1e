"""SQLAlchemy Unit of Work：为消息仓储提供会话与事务"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.message_repository import SQLAlchemyMessageRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        # 外部传入的会话由调用方负责关闭
        self._owns_session = session is None
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        await super().__aenter__()
        if self.session is None:
            self.session = self._session_factory()
        self.message_repository = SQLAlchemyMessageRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            self.message_repository = None
            if self._owns_session and self.session is not None:
                # close() 会回滚只读查询遗留的隐式事务
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if not self.readonly and self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._done = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._done = True
