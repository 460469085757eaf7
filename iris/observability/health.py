"""
健康检查模块

提供代理健康状态检查端点
"""

from fastapi import APIRouter, Request

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health_check(request: Request):
    """
    健康检查端点

    Returns:
        健康状态信息
    """
    settings = request.app.state.settings
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "routing_mode": settings.routing_mode.value,
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    就绪检查端点

    转发器在 lifespan 中创建完成后才算就绪
    """
    ready = getattr(request.app.state, "proxy", None) is not None
    return {
        "status": "ready" if ready else "starting",
        "service": request.app.state.settings.app_name,
    }
