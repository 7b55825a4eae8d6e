"""
FastAPI应用主入口
"""
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.middleware import RequestIDMiddleware, LoggingMiddleware
from api.routes import payments as payments_routes
from application.services.payment_service import PaymentService
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import get_logger
from core.response import success_response
from infrastructure.external.payments import build_wechatpay


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 密钥或商户配置无效时直接抛出 PaymentConfigurationError，启动失败
    # 平台证书未缓存时 SDK 会在构造时下载，放到线程中执行
    components = await asyncio.to_thread(build_wechatpay)
    app.state.wechatpay = components
    app.state.payment_service = PaymentService(
        gateway=components.client,
        verifier=components.notify_handler,
    )
    logger.info(
        "wechatpay_initialized",
        mch_id=components.merchant.mch_id,
    )

    yield

    app.state.payment_service = None
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="微信支付 Native 下单、退款、查单、关单与回调验签",
)

# 中间件（从下往上执行）：Request ID 先于日志
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)

app.include_router(payments_routes.router, prefix=settings.API_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
