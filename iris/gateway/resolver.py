"""
目标解析模块

dynamic 模式下从请求路径第一段解析目标主机：

    /example.com/foo/bar  ->  https://example.com  +  /foo/bar

static 模式下目标固定为配置的 target_url
"""

import re
from typing import Optional
from urllib.parse import urlparse

from iris.core.exceptions import InvalidTargetError
from iris.schemas.proxy import ResolvedTarget

DEFAULT_PROTOCOL = "https"

# 域名标签：字母数字，可含中间连字符，不能以连字符开头或结尾
_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?"

# 点分标签，不要求顶级域
DOMAIN_RE = re.compile(rf"(?:{_LABEL}\.)*{_LABEL}")


def is_valid_domain(candidate: str) -> bool:
    """检查是否符合主机名语法"""
    return DOMAIN_RE.fullmatch(candidate) is not None


def first_segment(path: str) -> str:
    """
    获取路径第一段

    /example.com/foo -> example.com
    """
    if path.startswith("/"):
        path = path[1:]
    return path.split("/", 1)[0]


def resolve_target(
    path: str,
    protocol_override: Optional[str] = None,
    default_protocol: str = DEFAULT_PROTOCOL,
) -> ResolvedTarget:
    """
    从请求路径解析目标源站

    Args:
        path: 请求路径（以 / 开头）
        protocol_override: 控制参数中指定的协议
        default_protocol: 默认协议

    Returns:
        解析后的目标

    Raises:
        InvalidTargetError: 第一段不是合法域名
    """
    candidate = first_segment(path)

    if not is_valid_domain(candidate):
        raise InvalidTargetError(candidate)

    return ResolvedTarget(
        protocol=protocol_override or default_protocol or DEFAULT_PROTOCOL,
        host=candidate,
        segment=candidate,
    )


def static_target(target_url: str) -> ResolvedTarget:
    """
    构建 static 模式的固定目标

    Args:
        target_url: 完整目标地址，如 http://backend:8080/api
    """
    parsed = urlparse(target_url)
    return ResolvedTarget(
        protocol=parsed.scheme or DEFAULT_PROTOCOL,
        host=parsed.netloc,
        base_path=parsed.path.rstrip("/"),
    )
