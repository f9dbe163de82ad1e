"""
Structlog 日志配置

structlog 与标准库 logging 共用同一处理链：应用代码用 ``get_logger`` 记录
``snake_case`` 事件名 + 关键字字段；uvicorn / sqlalchemy / httpx 的标准库日志
经 ProcessorFormatter 以同样的格式输出。WebSocket 路由通过 contextvars 绑定
``connection_id``，HTTP 中间件绑定 ``request_id``。
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


# 这些库在 DEBUG 下过于嘈杂
_QUIET_LOGGERS = ("httpcore", "httpx", "aiosqlite", "websockets", "uvicorn.access")


def _json_dumps(obj, default=None, **kwargs):
    return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)


def _resolve_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return logging.DEBUG if settings.DEBUG else logging.INFO


def configure_logging() -> None:
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        structlog.stdlib.add_logger_name,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=[*shared_pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = ConsoleRenderer(colors=True) if settings.DEBUG else JSONRenderer(serializer=_json_dumps)
    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=shared_pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # SQL 回显由 DATABASE__ECHO 控制
    if not settings.database.echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
