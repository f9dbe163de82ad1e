"""Message store backed by the unit of work.

Implements MessageStorePort for the session coordinator and the room
history endpoint. Every call opens its own unit of work, is bounded by
``timeout_s`` and reports connectivity problems as
StoreUnavailableException.
"""
from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from domain.chat.entity import ChatMessage
from domain.common.exceptions import StoreUnavailableException
from domain.common.unit_of_work import AbstractUnitOfWork
from core.logging_config import get_logger


logger = get_logger(__name__)


class MessageStore:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        timeout_s: Optional[float] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._timeout_s = timeout_s

    async def append(self, room: str, username: str, body: str) -> ChatMessage:
        async def _append() -> ChatMessage:
            async with self._uow_factory() as uow:
                message = await uow.message_repository.append(room, username, body)
                await uow.commit()
                return message

        message = await self._run("append", _append)
        logger.debug("message_persisted", room=room, message_id=message.id)
        return message

    async def recent(self, room: str, limit: int) -> List[ChatMessage]:
        async def _recent() -> List[ChatMessage]:
            async with self._uow_factory(readonly=True) as uow:
                return await uow.message_repository.recent(room, limit)

        return await self._run("recent", _recent)

    async def _run(self, operation: str, fn):
        try:
            if self._timeout_s and self._timeout_s > 0:
                return await asyncio.wait_for(fn(), timeout=self._timeout_s)
            return await fn()
        except asyncio.TimeoutError as exc:
            logger.error("message_store_timeout", operation=operation, timeout_s=self._timeout_s)
            raise StoreUnavailableException(operation, reason="timeout") from exc
        except (SQLAlchemyError, OSError, ConnectionError) as exc:
            logger.error("message_store_unavailable", operation=operation, error=str(exc))
            raise StoreUnavailableException(operation, reason=str(exc)) from exc
