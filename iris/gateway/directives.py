"""
控制参数解析模块

从查询字符串中解析请求头注入指令和目标协议覆盖：

    ?__request[header][Authorization][0]=Bearer+x
    &__request[header][Cookie][a]=a%3D1&__request[header][Cookie][b]=b%3D2
    &__request[protocol]=http

子键只用于区分同一请求头的多个值，解析后丢弃

__request[protocol] 为空（或只有空白）时视为未指定，使用默认协议；
非空但不是合法 URI scheme 时返回 400
"""

import re
from typing import Dict, Iterable, List, Tuple

from iris.core.exceptions import MalformedDirectiveError
from iris.core.logging import get_logger
from iris.schemas.proxy import RequestOptions

logger = get_logger("iris.gateway.directives")

DEFAULT_CONTROL_PARAM = "__request"

# 单个方括号段
_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]")

# URI scheme（RFC 3986）
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")


def split_control_key(key: str, control_param: str = DEFAULT_CONTROL_PARAM) -> List[str]:
    """
    拆分控制参数键的方括号路径

    __request[header][X-Token][0] -> ["header", "X-Token", "0"]

    Raises:
        MalformedDirectiveError: 方括号不闭合或夹杂其他字符
    """
    rest = key[len(control_param):]
    parts: List[str] = []
    pos = 0
    while pos < len(rest):
        match = _BRACKET_RE.match(rest, pos)
        if match is None:
            raise MalformedDirectiveError(f"无法解析的键 {key!r}")
        parts.append(match.group(1))
        pos = match.end()
    return parts


def _is_index(sub_key: str) -> bool:
    return sub_key.isdigit() and (sub_key == "0" or not sub_key.startswith("0"))


def _ordered_values(sub_map: Dict[str, List[str]]) -> List[str]:
    # 整数子键按数值升序在前，其余子键按出现顺序
    indexes = sorted((k for k in sub_map if _is_index(k)), key=int)
    names = [k for k in sub_map if not _is_index(k)]
    values: List[str] = []
    for sub_key in indexes + names:
        values.extend(sub_map[sub_key])
    return values


def parse_request_options(
    query_items: Iterable[Tuple[str, str]],
    control_param: str = DEFAULT_CONTROL_PARAM,
) -> RequestOptions:
    """
    解析控制参数

    Args:
        query_items: 查询参数 (key, value) 列表，保持原始顺序
        control_param: 控制参数名

    Returns:
        解析结果；没有控制参数时返回空结果

    Raises:
        MalformedDirectiveError: 控制参数存在但结构错误
    """
    raw_headers: Dict[str, Dict[str, List[str]]] = {}
    protocols: List[str] = []

    for key, value in query_items:
        if key == control_param:
            raise MalformedDirectiveError(f"{control_param} 必须是映射结构")
        if not key.startswith(control_param + "["):
            continue

        parts = split_control_key(key, control_param)
        section = parts[0]

        if section == "header":
            if len(parts) == 1:
                raise MalformedDirectiveError(f"{key} 必须是映射结构")
            if len(parts) == 2:
                raise MalformedDirectiveError(f"{key} 的值必须按子键给出")
            if len(parts) > 3:
                raise MalformedDirectiveError(f"{key} 嵌套层级过深")
            header_name, sub_key = parts[1], parts[2]
            if not header_name:
                raise MalformedDirectiveError("请求头名称不能为空")
            raw_headers.setdefault(header_name, {}).setdefault(sub_key, []).append(value)

        elif section == "protocol":
            if len(parts) > 1:
                raise MalformedDirectiveError(f"{key} 必须是字符串")
            protocols.append(value)

        else:
            logger.debug(f"忽略未知的控制参数: {key}")

    options = RequestOptions(
        headers={name: _ordered_values(sub_map) for name, sub_map in raw_headers.items()},
    )

    if protocols:
        if len(protocols) > 1:
            raise MalformedDirectiveError("protocol 只能指定一次")
        protocol = protocols[0].strip()
        if protocol:
            if not _SCHEME_RE.match(protocol):
                raise MalformedDirectiveError(f"无效的协议: {protocols[0]!r}")
            options.protocol = protocol.lower()

    return options
