"""
CORS 响应头合并模块

上游响应已有的 Access-Control-Allow-Methods / Access-Control-Allow-Headers
与配置值合并去重；Access-Control-Allow-Origin 直接覆盖
"""

from dataclasses import dataclass
from typing import List

from starlette.datastructures import MutableHeaders

ALLOW_ORIGIN = "Access-Control-Allow-Origin"
ALLOW_METHODS = "Access-Control-Allow-Methods"
ALLOW_HEADERS = "Access-Control-Allow-Headers"


@dataclass(frozen=True)
class CORSConfig:
    """CORS 响应头配置，空字符串表示不处理"""

    allow_origin: str = ""
    allow_methods: str = ""
    allow_headers: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.allow_origin or self.allow_methods or self.allow_headers)


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def merge_header_values(existing: str, additional: str) -> str:
    """
    合并两个逗号分隔的头值列表

    去除首尾空白、按首次出现顺序去重（区分大小写），用 ", " 拼接

    >>> merge_header_values("a, b", "b, c")
    'a, b, c'
    """
    merged = dict.fromkeys(_split(existing))
    merged.update(dict.fromkeys(_split(additional)))
    return ", ".join(merged)


def apply_cors_headers(headers: MutableHeaders, cors: CORSConfig) -> None:
    """
    在完整缓冲的响应上应用 CORS 配置

    Args:
        headers: 响应头（原地修改）
        cors: CORS 配置
    """
    for name, configured in ((ALLOW_METHODS, cors.allow_methods), (ALLOW_HEADERS, cors.allow_headers)):
        if not configured:
            continue
        # 多行同名头视为一个逗号列表
        existing = ", ".join(headers.getlist(name))
        headers[name] = merge_header_values(existing, configured)

    if cors.allow_origin:
        headers[ALLOW_ORIGIN] = cors.allow_origin
