"""
Request ID 中间件
用于生成或透传追踪ID，并通过contextvars传递给日志系统
"""
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    功能：
    1. 从请求头获取或生成新的request_id（微信支付回调带有 Request-ID）
    2. 将request_id绑定到structlog contextvars，供日志系统使用
    3. 在响应头中返回request_id
    """

    HEADER_NAME = "X-Request-ID"
    PROVIDER_HEADER_NAME = "Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = (
            request.headers.get(self.HEADER_NAME)
            or request.headers.get(self.PROVIDER_HEADER_NAME)
            or str(uuid.uuid4())
        )
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response
