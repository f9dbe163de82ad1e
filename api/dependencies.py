"""
API依赖项 - 从应用状态中取出生命周期内创建的组件
"""
from fastapi import Request

from application.services.message_store import MessageStore
from infrastructure.realtime.registry import ConnectionRegistry
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from core.config import settings


async def get_message_store(request: Request) -> MessageStore:
    store = getattr(request.app.state, "message_store", None)
    if store is None:
        # 未经过 lifespan（例如单独挂载路由）时按配置临时创建
        store = MessageStore(SQLAlchemyUnitOfWork, timeout_s=settings.database.timeout_s)
    return store


async def get_connection_registry(request: Request) -> ConnectionRegistry:
    registry = getattr(request.app.state, "connection_registry", None)
    if registry is None:
        raise RuntimeError("Connection registry not initialized. Ensure lifespan sets app.state.connection_registry.")
    return registry
