"""
REST API客户端基类

提供通用的HTTP请求功能，包括：
- 自动重试（仅网络错误与 429/5xx）
- 错误处理
- 请求/响应日志（不记录请求体，避免泄露凭证）
- 超时控制
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class APIResponse:
    """API响应封装"""
    status_code: int
    data: Any
    elapsed_ms: float
    request_id: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

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
        super().__init__(self.message)

    def __str__(self):
        if self.status_code:
            return f"{self.message} | Status: {self.status_code}"
        return self.message


class RetryableAPIError(APIError):
    """可重试的API错误"""


RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class BaseAPIClient:
    """
    REST API客户端基类

    提供通用的HTTP请求功能，子类可以继承并实现具体的API调用
    """

    def __init__(
        self,
        base_url: str,
        timeout: httpx.Timeout,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport

        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if headers:
            self.default_headers.update(headers)

        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """关闭HTTP客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _send_once(self, method: str, url: str, json_data: Optional[Dict[str, Any]]) -> APIResponse:
        start_time = datetime.now()
        response = await self.client.request(method, url, json=json_data, headers=self.default_headers)
        elapsed = (datetime.now() - start_time).total_seconds() * 1000

        response_data = None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                response_data = response.json()
            except json.JSONDecodeError:
                response_data = None

        api_response = APIResponse(
            status_code=response.status_code,
            data=response_data,
            elapsed_ms=elapsed,
            request_id=response.headers.get("x-request-id"),
        )
        logger.debug(
            "api_response",
            url=url,
            status_code=api_response.status_code,
            elapsed_ms=round(elapsed, 2),
        )
        if api_response.is_error and api_response.status_code in RETRY_STATUS_CODES:
            raise RetryableAPIError(
                f"Transient API error with status {api_response.status_code}",
                status_code=api_response.status_code,
                response=api_response,
            )
        return api_response

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
        *,
        retry: bool = True,
    ) -> APIResponse:
        """
        发送HTTP请求

        4xx responses are returned to the caller, which knows whether the body
        carries a business failure. Transport errors and exhausted retries
        raise APIError. Non-idempotent calls pass retry=False.
        """
        url = self._build_url(endpoint)
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1 if retry else 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, RetryableAPIError)),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send_once(method, url, json_data)
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout calling {endpoint}") from exc
        except httpx.TransportError as exc:
            raise APIError(f"Transport error: {exc}") from exc
        except RetryableAPIError as exc:
            raise APIError(exc.message, status_code=exc.status_code, response=exc.response) from exc

    async def post(self, endpoint: str, json_data: Optional[Dict[str, Any]] = None, *, retry: bool = True) -> APIResponse:
        """POST请求"""
        return await self._request("POST", endpoint, json_data, retry=retry)
