"""
代理路由端点

所有非管理端点的请求都在这里交给代理编排器处理
"""

from fastapi import APIRouter, Request, Response

router = APIRouter(tags=["代理"])


@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
async def proxy_handler(request: Request, path: str) -> Response:
    """
    代理端点

    注意：此路由必须在所有其他路由之后注册，作为兜底路由
    """
    return await request.app.state.proxy.handle(request)
