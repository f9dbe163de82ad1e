"""
Request ID 中间件

HTTP 请求与 WebSocket 握手都会获得一个追踪ID（优先透传 ``X-Request-ID``），
写入 ``scope["state"]`` 并绑定到 structlog 上下文；HTTP 响应头回写同一个ID。
"""
import uuid

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send


def _client_ip(scope: Scope, headers: Headers) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        # 代理链中第一个是原始客户端
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip
    client = scope.get("client")
    return client[0] if client else "unknown"


class RequestIDMiddleware:
    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = _client_ip(scope, headers)

        state = scope.setdefault("state", {})
        state["request_id"] = request_id
        state["client_ip"] = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            path=scope.get("path"),
        )

        if scope["type"] == "websocket":
            await self.app(scope, receive, send)
            return

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[self.HEADER_NAME] = request_id
            await send(message)

        await self.app(scope, receive, send_with_request_id)
