"""
HTTP 转发模块

基于 httpx 将改写后的请求发送到目标源站，并把上游响应转换为 Starlette 响应：
- 缓冲模式：读取完整响应体后返回，供后续合并响应头
- 流式模式：原样转发字节流，响应结束后关闭上游连接
"""

from typing import Optional

import httpx
from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from iris.core.config import Settings
from iris.core.exceptions import UpstreamDispatchError
from iris.core.logging import get_logger
from iris.gateway.rewriter import HOP_BY_HOP_HEADERS
from iris.schemas.proxy import RewrittenRequest

logger = get_logger("iris.gateway.transport")

# 没有响应体的状态码，Content-Length 按上游原样转发
BODYLESS_STATUS_CODES = {204, 304}


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """
    创建共享的 httpx 客户端（连接池在所有请求之间复用）

    Args:
        settings: 应用配置
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.proxy_timeout),
        verify=settings.proxy_verify_ssl,
        follow_redirects=False,
    )


def _to_dispatch_error(error: httpx.HTTPError, url: str) -> UpstreamDispatchError:
    if isinstance(error, httpx.TimeoutException):
        return UpstreamDispatchError(f"上游服务响应超时: {url}")
    return UpstreamDispatchError(f"上游服务连接失败: {url} ({type(error).__name__}: {error})")


class HttpTransport:
    """
    上游转发器

    只负责收发字节，不做任何改写；失败统一转换为 UpstreamDispatchError，不重试
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def send(
        self,
        rewritten: RewrittenRequest,
        content: Optional[bytes] = None,
    ) -> httpx.Response:
        """
        发送请求，只等待响应头（响应体保持未读取）

        Raises:
            UpstreamDispatchError: 连接失败、超时、TLS 错误等
        """
        url = rewritten.url
        request = self.client.build_request(
            method=rewritten.method,
            url=url,
            headers=rewritten.headers,
            content=content or None,
        )
        try:
            return await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise _to_dispatch_error(e, url) from e

    async def read_body(self, upstream: httpx.Response) -> bytes:
        """
        读取完整的原始响应体（不解压），随后关闭上游响应

        Raises:
            UpstreamDispatchError: 读取过程中连接中断或超时
        """
        try:
            return b"".join([chunk async for chunk in upstream.aiter_raw()])
        except httpx.HTTPError as e:
            raise _to_dispatch_error(e, str(upstream.request.url)) from e
        finally:
            await upstream.aclose()


def _copy_headers(upstream: httpx.Response, response: Response, skip: set) -> None:
    for name, value in upstream.headers.multi_items():
        if name.lower() in skip:
            continue
        response.headers.append(name, value)


def build_buffered_response(
    upstream: httpx.Response, body: bytes, method: str = "GET"
) -> Response:
    """
    用完整响应体构建响应

    Content-Length 一般由 Starlette 按实际长度重新计算。
    HEAD 以及 204/304 响应没有响应体，保留上游声明的 Content-Length
    """
    response = Response(content=body, status_code=upstream.status_code)
    if method.upper() == "HEAD" or upstream.status_code in BODYLESS_STATUS_CODES:
        if "content-length" in response.headers:
            del response.headers["content-length"]
        _copy_headers(upstream, response, HOP_BY_HOP_HEADERS)
    else:
        _copy_headers(upstream, response, HOP_BY_HOP_HEADERS | {"content-length"})
    return response


def build_streaming_response(upstream: httpx.Response) -> StreamingResponse:
    """原样转发上游字节流，发送完毕后在后台关闭上游响应"""
    response = StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    _copy_headers(upstream, response, HOP_BY_HOP_HEADERS)
    return response
