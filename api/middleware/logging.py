"""
请求/响应日志中间件

记录 HTTP 请求（房间查询、健康检查等）的状态码与耗时；WebSocket 连接不经过
此中间件，由 ws 路由按 connection_id 自行记录。
"""
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    SKIP_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        info = {
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
        }
        logger.info("request_started", **info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - started,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **info,
            )
            raise

        duration = time.perf_counter() - started
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        self._log_response(response, duration, info)
        return response

    def _log_response(self, response: Response, duration: float, info: dict) -> None:
        status_code = response.status_code
        if status_code < 400:
            logger.info("request_completed", status_code=status_code, duration=duration, **info)
        elif status_code < 500:
            logger.warning("request_client_error", status_code=status_code, duration=duration, **info)
        else:
            logger.error("request_server_error", status_code=status_code, duration=duration, **info)
