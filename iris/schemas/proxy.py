"""
代理请求数据模型

所有模型都只在单个请求的生命周期内存在，不在请求之间共享
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx


@dataclass
class RequestOptions:
    """
    控制参数解析结果

    从 ?__request[header][<name>][<key>]=<value>&__request[protocol]=<scheme> 解析
    """

    # 要注入的请求头：头名称 -> 值片段列表（发送前用 "; " 拼接）
    headers: Dict[str, List[str]] = field(default_factory=dict)
    # 目标协议覆盖（None 表示使用默认协议）
    protocol: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.headers and self.protocol is None


@dataclass(frozen=True)
class ResolvedTarget:
    """解析后的目标源站"""

    # 协议（http/https）
    protocol: str
    # 主机（static 模式下可带端口）
    host: str
    # 被解析的路径第一段（static 模式为空）
    segment: str = ""
    # 固定目标地址自带的路径前缀（dynamic 模式为空）
    base_path: str = ""

    @property
    def origin(self) -> str:
        """目标源站，如 https://example.com"""
        return f"{self.protocol}://{self.host}"

    @property
    def segment_length(self) -> int:
        """需要从请求路径剥离的前缀长度（含前导 /）"""
        return len(self.segment) + 1 if self.segment else 0


@dataclass(frozen=True)
class ClientInfo:
    """入站连接信息（用于 X-Forwarded-* 头）"""

    ip: str
    # 入站协议
    scheme: str
    # 入站 Host 头
    host: str = ""
    # 入站端口
    port: Optional[int] = None


@dataclass
class RewrittenRequest:
    """改写后的出站请求"""

    method: str
    target: ResolvedTarget
    # 剥离目标段后的路径（可能为空字符串）
    path: str
    # 清理后的查询字符串（不含 ?）
    query: str
    headers: httpx.Headers

    @property
    def path_and_query(self) -> str:
        path = f"{self.target.base_path}{self.path}" or "/"
        if not path.startswith("/"):
            path = "/" + path
        if self.query:
            return f"{path}?{self.query}"
        return path

    @property
    def url(self) -> str:
        return f"{self.target.origin}{self.path_and_query}"
