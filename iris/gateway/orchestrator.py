"""
代理编排模块

按顺序执行：解析控制参数 -> 解析目标 -> 改写请求 -> 转发 -> （缓冲模式）合并响应头

请求状态流转：

    RECEIVED -> DIRECTIVES_PARSED -> TARGET_RESOLVED
             -> SHORT_CIRCUIT_OPTIONS | REJECTED_INVALID_TARGET | REWRITTEN
             -> DISPATCHED -> RESPONSE_RECEIVED -> (HEADERS_MERGED) -> RELEASED
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
from fastapi import Request, Response

from iris.core.config import RoutingMode, Settings
from iris.core.exceptions import (
    ClientDisconnectedError,
    InvalidTargetError,
    IrisError,
    MalformedDirectiveError,
)
from iris.core.logging import get_logger
from iris.gateway.cors import CORSConfig, apply_cors_headers
from iris.gateway.directives import parse_request_options
from iris.gateway.resolver import resolve_target, static_target
from iris.gateway.rewriter import rewrite_request
from iris.gateway.transport import (
    HttpTransport,
    build_buffered_response,
    build_streaming_response,
)
from iris.observability.metrics import MetricsCollector
from iris.schemas.proxy import ClientInfo, RequestOptions, ResolvedTarget, RewrittenRequest

logger = get_logger("iris.gateway.orchestrator")


class ProxyState(str, Enum):
    """单个请求的处理状态"""
    RECEIVED = "received"
    DIRECTIVES_PARSED = "directives_parsed"
    REJECTED_MALFORMED = "rejected_malformed"
    TARGET_RESOLVED = "target_resolved"
    SHORT_CIRCUIT_OPTIONS = "short_circuit_options"
    REJECTED_INVALID_TARGET = "rejected_invalid_target"
    REWRITTEN = "rewritten"
    DISPATCHED = "dispatched"
    RESPONSE_RECEIVED = "response_received"
    HEADERS_MERGED = "headers_merged"
    RELEASED = "released"


@dataclass
class ProxyContext:
    """
    代理上下文

    在单个请求的处理过程中传递，请求结束即丢弃
    """

    request: Request
    request_id: str = ""
    start_time: float = 0
    state: ProxyState = ProxyState.RECEIVED
    options: Optional[RequestOptions] = None
    target: Optional[ResolvedTarget] = None
    rewritten: Optional[RewrittenRequest] = None
    status_code: int = 0

    @property
    def latency_ms(self) -> float:
        return (time.time() - self.start_time) * 1000

    def transition(self, state: ProxyState) -> None:
        logger.debug(
            f"{self.state.value} -> {state.value}",
            extra={"request_id": self.request_id, "path": self.request.url.path},
        )
        self.state = state


def _request_path(request: Request) -> str:
    # 优先使用未解码的原始路径，避免 %2F 等被还原后改变路径结构
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1")
    return request.url.path


def _client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=request.client.host if request.client else "unknown",
        scheme=request.url.scheme,
        host=request.headers.get("host", ""),
        port=request.url.port,
    )


class ProxyOrchestrator:
    """
    代理编排器

    配置和转发器在构造时注入；自身不持有任何请求间共享的可变状态
    """

    def __init__(
        self,
        settings: Settings,
        transport: HttpTransport,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.settings = settings
        self.transport = transport
        self.metrics = metrics
        self.cors = CORSConfig(
            allow_origin=settings.cors_allow_origin,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )
        self._static_target = (
            static_target(settings.target_url)
            if settings.routing_mode == RoutingMode.STATIC_TARGET
            else None
        )

    @property
    def buffering(self) -> bool:
        return self.settings.buffer_responses

    def resolve(self, path: str, options: RequestOptions) -> ResolvedTarget:
        """按路由模式解析目标"""
        if self._static_target is not None:
            if options.protocol:
                logger.debug(f"static_target 模式忽略协议覆盖: {options.protocol}")
            return self._static_target
        return resolve_target(path, options.protocol, self.settings.default_protocol)

    async def handle(self, request: Request) -> Response:
        """
        处理单个代理请求

        Raises:
            MalformedDirectiveError: 控制参数结构错误（400）
            InvalidTargetError: 目标域名不合法（400）
            UpstreamDispatchError: 上游转发失败（502）
            ClientDisconnectedError: 客户端在上游响应前断开
        """
        ctx = ProxyContext(
            request=request,
            request_id=getattr(request.state, "request_id", ""),
            start_time=time.time(),
        )

        try:
            response = await self._handle(ctx)
        except IrisError as e:
            ctx.status_code = e.status_code
            await self._record(ctx)
            raise

        ctx.status_code = response.status_code
        await self._record(ctx)
        return response

    async def _handle(self, ctx: ProxyContext) -> Response:
        request = ctx.request
        path = _request_path(request)

        try:
            ctx.options = parse_request_options(
                request.query_params.multi_items(),
                self.settings.control_param,
            )
        except MalformedDirectiveError as e:
            ctx.transition(ProxyState.REJECTED_MALFORMED)
            logger.warning(
                e.message,
                extra={"request_id": ctx.request_id, "method": request.method, "path": path},
            )
            raise
        ctx.transition(ProxyState.DIRECTIVES_PARSED)

        try:
            ctx.target = self.resolve(path, ctx.options)
        except InvalidTargetError as e:
            ctx.transition(ProxyState.REJECTED_INVALID_TARGET)
            logger.warning(
                e.message,
                extra={"request_id": ctx.request_id, "method": request.method, "path": path},
            )
            raise
        ctx.transition(ProxyState.TARGET_RESOLVED)

        # 预检请求只做目标校验，不转发
        if request.method == "OPTIONS":
            ctx.transition(ProxyState.SHORT_CIRCUIT_OPTIONS)
            response = Response(status_code=200)
            if self.buffering:
                apply_cors_headers(response.headers, self.cors)
            return response

        ctx.rewritten = rewrite_request(
            method=request.method,
            path=path,
            query_string=request.url.query,
            headers=request.headers.items(),
            options=ctx.options,
            target=ctx.target,
            control_param=self.settings.control_param,
            client=_client_info(request) if self.settings.proxy_xfwd else None,
        )
        if self.settings.proxy_xfwd and ctx.request_id:
            ctx.rewritten.headers["X-Request-ID"] = ctx.request_id
        ctx.transition(ProxyState.REWRITTEN)

        body = await request.body()

        ctx.transition(ProxyState.DISPATCHED)
        upstream = await self._dispatch(ctx, body)
        ctx.transition(ProxyState.RESPONSE_RECEIVED)

        if self.buffering:
            content = await self.transport.read_body(upstream)
            response = build_buffered_response(upstream, content, ctx.rewritten.method)
            apply_cors_headers(response.headers, self.cors)
            ctx.transition(ProxyState.HEADERS_MERGED)
        else:
            response = build_streaming_response(upstream)

        ctx.transition(ProxyState.RELEASED)
        logger.debug(
            f"代理请求完成: {request.method} {path} -> {upstream.status_code}",
            extra={
                "request_id": ctx.request_id,
                "target_host": ctx.target.host,
                "upstream_url": ctx.rewritten.url,
                "status_code": upstream.status_code,
                "latency_ms": round(ctx.latency_ms, 2),
            },
        )
        return response

    async def _dispatch(self, ctx: ProxyContext, body: bytes) -> httpx.Response:
        """
        发送上游请求，同时监测客户端断开

        客户端先断开时取消上游请求
        """
        upstream_task = asyncio.ensure_future(self.transport.send(ctx.rewritten, body))
        watcher_task = asyncio.ensure_future(self._wait_for_disconnect(ctx.request))

        try:
            await asyncio.wait(
                {upstream_task, watcher_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            upstream_task.cancel()
            raise
        finally:
            watcher_task.cancel()

        if upstream_task.done():
            return upstream_task.result()

        upstream_task.cancel()
        try:
            await upstream_task
        except asyncio.CancelledError:
            pass

        ctx.transition(ProxyState.RELEASED)
        logger.info(
            f"客户端已断开，取消上游请求: {ctx.rewritten.url}",
            extra={"request_id": ctx.request_id, "target_host": ctx.target.host},
        )
        raise ClientDisconnectedError()

    async def _wait_for_disconnect(self, request: Request) -> None:
        """
        阻塞读取 ASGI 消息直到收到 http.disconnect

        请求体已在分发前读完，之后只会收到断开消息。
        不使用 is_disconnected()：它在已取消的作用域里调用 receive，
        经过 BaseHTTPMiddleware 时断开消息可能丢失
        """
        while True:
            message = await request.receive()
            if message["type"] == "http.disconnect":
                return

    async def _record(self, ctx: ProxyContext) -> None:
        if self.metrics is None:
            return
        await self.metrics.record(
            target_host=ctx.target.host if ctx.target else "",
            status_code=ctx.status_code,
            latency_ms=ctx.latency_ms,
        )
