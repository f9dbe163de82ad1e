"""
REST API客户端基类

推送等外部 HTTP 服务共用：
- httpx.AsyncClient 懒加载，可在测试中替换 ``_client``
- tenacity 控制重试；``max_retries=0`` 表示只发送一次
- 非 2xx 响应统一转换为 APIError 子类
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# 网关/限流类状态码视为暂时性错误
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class APIResponse:
    status_code: int
    headers: Dict[str, str]
    data: Any
    elapsed_ms: float
    request_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class APIError(Exception):
    """API错误基类"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[APIResponse] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(message)

    def __str__(self):
        if self.status_code:
            return f"{self.message} | Status: {self.status_code}"
        return self.message


class AuthenticationError(APIError):
    """401/403"""


class RateLimitError(APIError):
    """429"""


class ServerError(APIError):
    """5xx"""


class _TransientError(APIError):
    """仅在重试循环内部使用，最终会被转换为具体的 APIError"""


def _error_message(response: APIResponse) -> str:
    """从常见的错误响应体中提取可读信息"""
    default = f"API request failed with status {response.status_code}"
    body = response.data
    if not isinstance(body, dict):
        return default
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return str(errors[0].get("message") or default)
    return str(body.get("message") or body.get("error") or body.get("detail") or default)


def raise_for_response(response: APIResponse) -> None:
    if not response.is_error:
        return
    status = response.status_code
    if status in (401, 403):
        error_class = AuthenticationError
    elif status == 429:
        error_class = RateLimitError
    elif status >= 500:
        error_class = ServerError
    else:
        error_class = APIError
    raise error_class(_error_message(response), status_code=status, response=response)


class BaseAPIClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 0,
        retry_delay: float = 1.0,
        headers: Optional[Dict[str, str]] = None,
        auth_token: Optional[str] = None,
        user_agent: str = "Chat-Relay/1.0",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.retry_delay = retry_delay
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": user_agent,
            **(headers or {}),
        }
        if auth_token:
            self.default_headers["Authorization"] = f"Bearer {auth_token}"
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def post(self, endpoint: str, json_data: Any = None, headers: Optional[Dict[str, str]] = None) -> APIResponse:
        return await self._request("POST", endpoint, json_data=json_data, headers=headers)

    async def _send_once(self, method: str, url: str, json_data: Any, headers: Dict[str, str]) -> APIResponse:
        started = time.perf_counter()
        raw = await self.client.request(method, url, json=json_data, headers=headers)
        data = None
        if "application/json" in raw.headers.get("content-type", ""):
            try:
                data = raw.json()
            except json.JSONDecodeError:
                data = None
        response = APIResponse(
            status_code=raw.status_code,
            headers=dict(raw.headers),
            data=data,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            request_id=raw.headers.get("x-request-id"),
        )
        logger.debug("API Response: %s %s -> %s (%.1fms)", method, url, response.status_code, response.elapsed_ms)
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise _TransientError("transient API error", status_code=response.status_code, response=response)
        raise_for_response(response)
        return response

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """
        发送请求，按配置对超时/网络错误/暂时性状态码重试

        Raises:
            APIError: 重试耗尽后仍失败，或收到非暂时性错误响应
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        request_headers = {**self.default_headers, **(headers or {})}
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, _TransientError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send_once(method, url, json_data, request_headers)
        except _TransientError as exc:
            raise_for_response(exc.response)
            raise
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise APIError(f"Network error: {exc}") from exc
