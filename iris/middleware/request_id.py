"""
请求 ID 中间件

为每个请求生成唯一 ID，用于链路追踪，并输出访问日志
"""

import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from iris.core.logging import get_logger

logger = get_logger("iris.access")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    请求 ID 中间件

    功能：
    - 从请求头获取或生成 Request-ID，存储到 request.state
    - 将 Request-ID 添加到响应头
    - 请求结束后记录一条访问日志
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Trace-ID")
            or str(uuid4())
        )
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": round((time.time() - start_time) * 1000, 2),
                "client_ip": request.client.host if request.client else "unknown",
            },
        )

        return response
