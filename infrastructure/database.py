"""
数据库配置和连接管理
"""
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool
from typing import Any, Dict

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "mysql": "mysql+aiomysql",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新DATABASE__URL")

    async_driver = driver_map[drivername]
    return url.set(drivername=async_driver).render_as_string(hide_password=False)


def _engine_options(database_url: str) -> Dict[str, Any]:
    """内存 SQLite 需要所有会话共享同一个连接"""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {}


def build_engine(database_url: str, *, echo: bool = False):
    async_url = _build_async_url(database_url)
    return create_async_engine(async_url, echo=echo, future=True, **_engine_options(async_url))


# 创建异步引擎
engine = build_engine(settings.database.url, echo=settings.database.echo)

# 创建异步会话工厂
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables(bind=None):
    """
    创建所有表

    根据models中定义的所有模型创建对应的数据库表
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind=None):
    """
    删除所有表

    警告：仅用于测试环境，会删除所有数据！
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def dispose_engine() -> None:
    await engine.dispose()
