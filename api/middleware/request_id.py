"""
Request ID 中间件
生成或透传追踪ID，解析客户端IP，并通过contextvars传递给日志系统
"""
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

import structlog

from core.config import settings


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    The resolved client IP is what the webhook allowlist checks, so forwarding
    headers are only honoured when TRUST_FORWARDED_HEADERS is on (i.e. the
    service runs behind a proxy that overwrites them).
    """

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp, trust_forwarded: Optional[bool] = None):
        super().__init__(app)
        self.trust_forwarded = settings.TRUST_FORWARDED_HEADERS if trust_forwarded is None else trust_forwarded

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self._get_client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

        # 绑定到structlog上下文
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        if self.trust_forwarded:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                # 第一个地址为原始客户端
                return forwarded.split(",")[0].strip()
            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip.strip()
        return request.client.host if request.client else "unknown"


def get_request_id() -> Optional[str]:
    """当前请求的request_id（不在请求上下文中时为None）"""
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()
