"""
FastAPI 应用入口

配置和创建 FastAPI 应用
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from iris.core.config import Settings, get_settings
from iris.core.exceptions import IrisError
from iris.core.logging import get_logger, setup_logging
from iris.gateway.orchestrator import ProxyOrchestrator
from iris.gateway.router import router as proxy_router
from iris.gateway.transport import HttpTransport, create_http_client
from iris.middleware.request_id import RequestIDMiddleware
from iris.observability.health import router as health_router
from iris.observability.metrics import MetricsCollector
from iris.observability.metrics import router as metrics_router

logger = get_logger("iris.main")


async def iris_error_handler(request: Request, exc: IrisError) -> JSONResponse:
    """将 IrisError 转换为 JSON 错误响应"""
    logger.debug(
        f"请求失败: {exc.message}",
        extra={
            "request_id": getattr(request.state, "request_id", ""),
            "path": request.url.path,
            "status_code": exc.status_code,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.reason, "message": exc.message},
    )


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        settings: 应用配置，None 时从环境变量加载
        http_client: 上游 httpx 客户端，None 时在启动时按配置创建

    Returns:
        配置好的 FastAPI 应用
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        应用生命周期管理

        启动时配置日志、创建共享 httpx 客户端和代理编排器；
        关闭时释放自己创建的客户端
        """
        setup_logging(settings.log_level, settings.log_json_format)

        client = http_client or create_http_client(settings)
        app.state.proxy = ProxyOrchestrator(
            settings=settings,
            transport=HttpTransport(client),
            metrics=app.state.metrics if settings.metrics_enabled else None,
        )

        logger.info(
            f"{settings.app_name} 已启动，对外端口 {settings.advertised_port}",
            extra={
                "extra_fields": {
                    "environment": settings.environment,
                    "routing_mode": settings.routing_mode.value,
                    "target_url": settings.target_url or None,
                    "default_protocol": settings.default_protocol,
                    "buffer_responses": settings.buffer_responses,
                }
            },
        )

        yield

        logger.info(f"正在关闭 {settings.app_name}...")
        app.state.proxy = None
        if http_client is None:
            await client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="动态反向代理，按请求路径解析目标并注入请求头",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.metrics = MetricsCollector(max_targets=settings.metrics_max_targets)
    app.state.proxy = None

    app.add_exception_handler(IrisError, iris_error_handler)
    app.add_middleware(RequestIDMiddleware)

    # 管理端点（必须在兜底代理路由之前注册）
    app.include_router(health_router, prefix=settings.admin_prefix)
    if settings.metrics_enabled:
        app.include_router(metrics_router, prefix=settings.admin_prefix)

    app.include_router(proxy_router)

    return app


# 创建应用实例
app = create_app()
