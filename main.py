"""
FastAPI应用主入口
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import rooms as rooms_routes
from api.routes import ws as ws_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables, dispose_engine
from infrastructure.external.push import build_push_transport
from infrastructure.realtime.broadcaster import RoomBroadcaster
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.registry import ConnectionRegistry
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from application.services.message_store import MessageStore
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.session_coordinator import SessionCoordinator


# 初始化日志：在入口处显式配置
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info("database_schema_expected", message="No auto-create in production, tables must already exist")

    registry = ConnectionRegistry()
    connections = ConnectionManager()
    broadcaster = RoomBroadcaster(registry=registry, sender=connections)
    store = MessageStore(SQLAlchemyUnitOfWork, timeout_s=settings.database.timeout_s)

    # 推送通知（可选）：未启用时不创建 dispatcher，消息仍正常广播
    push = build_push_transport()
    dispatcher = None
    if push is not None:
        dispatcher = NotificationDispatcher(
            registry=registry,
            transport=push,
            title_template=settings.push.title_template,
        )
        logger.info("push_initialized", provider="expo", base_url=push.base_url)
    else:
        logger.info("push_disabled")

    coordinator = SessionCoordinator(
        registry=registry,
        broadcaster=broadcaster,
        store=store,
        dispatcher=dispatcher,
        history_limit=settings.CHAT_HISTORY_LIMIT,
        strict_identity=settings.REALTIME_STRICT_IDENTITY,
    )
    app.state.connection_registry = registry
    app.state.realtime_connections = connections
    app.state.message_store = store
    app.state.push_transport = push
    app.state.session_coordinator = coordinator
    logger.info("realtime_initialized")

    yield
    # 关闭时的清理工作
    await connections.flush()
    await coordinator.aclose()
    await connections.close_all()
    if push is not None:
        await push.close()
    await dispose_engine()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="实时房间聊天中继：WebSocket 房间广播、历史消息与推送通知",
)

# 添加中间件（后添加的在外层，先执行）
# 1. 日志中间件（依赖 request_id，位于 RequestID 内层）
app.add_middleware(LoggingMiddleware)

# 2. Request ID中间件（HTTP 与 WebSocket 都会经过）
app.add_middleware(RequestIDMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(rooms_routes.router, prefix="/api/v1")
app.include_router(ws_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
        message="Chat Server is Running"
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """健康检查端点"""
    registry = getattr(request.app.state, "connection_registry", None)
    return success_response(
        data={
            "status": "healthy",
            "connections": len(registry) if registry is not None else 0,
        },
        message="OK",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
