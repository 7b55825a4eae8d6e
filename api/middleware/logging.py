"""
请求/响应日志中间件
记录HTTP请求和响应，包括耗时统计（不记录请求体，回调报文含密文）
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """日志记录中间件"""

    # 跳过日志的路径
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            query_params=dict(request.query_params),
            client_ip=request.client.host if request.client else None,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.time() - start_time, 4),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration=round(time.time() - start_time, 4),
        )
        return response
