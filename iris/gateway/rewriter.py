"""
请求改写模块

根据解析出的控制参数和目标生成出站请求：
- 合并注入的请求头（追加而不是替换）
- 注入 X-Forwarded-* 头
- 剥离路径中的目标段
- 移除查询字符串中的控制参数
"""

from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote_plus

import httpx

from iris.gateway.directives import DEFAULT_CONTROL_PARAM
from iris.schemas.proxy import ClientInfo, RequestOptions, ResolvedTarget, RewrittenRequest

# hop-by-hop 头（不应转发）
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# 注入值之间的分隔符
DIRECTIVE_SEPARATOR = "; "


def filter_request_headers(headers: Iterable[Tuple[str, str]]) -> httpx.Headers:
    """
    复制入站请求头，移除 hop-by-hop 头和 Host 头

    Host 由 httpx 按目标主机重新设置
    """
    return httpx.Headers(
        [
            (name, value)
            for name, value in headers
            if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() != "host"
        ]
    )


def add_forwarded_headers(headers: httpx.Headers, client: ClientInfo) -> None:
    """
    注入 X-Forwarded-* 头

    For/Proto/Port 追加到已有值之后，Host 仅在缺失时设置
    """
    forwarded: Dict[str, Optional[str]] = {
        "X-Forwarded-For": client.ip,
        "X-Forwarded-Proto": client.scheme,
        "X-Forwarded-Port": str(client.port) if client.port else None,
    }
    for name, value in forwarded.items():
        if not value:
            continue
        existing = headers.get(name)
        headers[name] = f"{existing}, {value}" if existing else value

    if client.host and "X-Forwarded-Host" not in headers:
        headers["X-Forwarded-Host"] = client.host
    headers["X-Real-IP"] = client.ip


def merge_directive_headers(headers: httpx.Headers, directives: Dict[str, List[str]]) -> None:
    """
    合并注入的请求头

    每个指令的值用 "; " 拼接；已有同名头时追加在原值之后

    Args:
        headers: 出站请求头（原地修改）
        directives: 头名称 -> 值片段列表
    """
    for name, values in directives.items():
        joined = DIRECTIVE_SEPARATOR.join(values)
        existing = headers.get(name)
        headers[name] = f"{existing}{DIRECTIVE_SEPARATOR}{joined}" if existing else joined


def strip_target_segment(path: str, target: ResolvedTarget) -> str:
    """
    按长度剥离路径开头的 /<目标段>

    /example.com/foo -> /foo
    /example.com     -> ""
    """
    return path[target.segment_length:]


def sanitize_query(query_string: str, control_param: str = DEFAULT_CONTROL_PARAM) -> str:
    """
    移除以控制参数名开头的查询参数

    其余参数保持原始编码和顺序
    """
    kept = []
    for pair in query_string.split("&"):
        if not pair:
            continue
        raw_key = pair.split("=", 1)[0]
        if unquote_plus(raw_key).startswith(control_param):
            continue
        kept.append(pair)
    return "&".join(kept)


def rewrite_request(
    method: str,
    path: str,
    query_string: str,
    headers: Iterable[Tuple[str, str]],
    options: RequestOptions,
    target: ResolvedTarget,
    control_param: str = DEFAULT_CONTROL_PARAM,
    client: Optional[ClientInfo] = None,
) -> RewrittenRequest:
    """
    生成出站请求

    Args:
        method: HTTP 方法
        path: 入站请求路径
        query_string: 入站原始查询字符串（不含 ?）
        headers: 入站请求头
        options: 控制参数解析结果
        target: 解析后的目标
        control_param: 控制参数名
        client: 入站连接信息，None 表示不注入 X-Forwarded-* 头

    Returns:
        改写后的请求
    """
    outbound_headers = filter_request_headers(headers)

    if client is not None:
        add_forwarded_headers(outbound_headers, client)

    merge_directive_headers(outbound_headers, options.headers)

    return RewrittenRequest(
        method=method,
        target=target,
        path=strip_target_segment(path, target),
        query=sanitize_query(query_string, control_param),
        headers=outbound_headers,
    )
