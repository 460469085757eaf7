"""
应用配置模块

使用 pydantic-settings 管理配置，支持环境变量和 .env 文件

配置对象在启动时构建一次（不可变），通过依赖注入传给代理编排器，
请求处理代码中不直接读取环境变量
"""

from enum import Enum
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iris.gateway.resolver import first_segment, is_valid_domain


class RoutingMode(str, Enum):
    """路由模式"""
    # 所有请求转发到固定的 target_url
    STATIC_TARGET = "static_target"
    # 从请求路径的第一段解析目标主机
    DYNAMIC_PATH_TARGET = "dynamic_path_target"


class Settings(BaseSettings):
    """Iris 配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="IRIS_",
        frozen=True,
    )

    # ========== 应用基础配置 ==========
    app_name: str = "Iris"
    app_version: str = "0.1.0"
    # 运行环境（prod/dev/test）
    environment: str = "prod"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 3000
    # 对外暴露的端口（容器端口映射时与 port 不同，仅用于启动日志）
    external_port: int = 3000

    # ========== 路由配置 ==========
    # 路由模式
    routing_mode: RoutingMode = RoutingMode.DYNAMIC_PATH_TARGET
    # 固定目标地址（static_target 模式必填）
    target_url: str = ""
    # 默认目标协议（请求未通过控制参数指定协议时使用）
    default_protocol: str = "https"
    # 控制参数名（查询字符串中的保留键）
    control_param: str = "__request"

    # ========== 代理配置 ==========
    # 代理请求超时时间（秒）
    proxy_timeout: float = 30.0
    # 是否校验上游证书
    proxy_verify_ssl: bool = False
    # 是否注入 X-Forwarded-* 头
    proxy_xfwd: bool = True

    # ========== CORS 配置 ==========
    # 为空表示不处理对应的响应头
    cors_allow_origin: str = ""
    cors_allow_methods: str = ""
    cors_allow_headers: str = ""
    # 是否启用响应头合并（启用后响应会被完整缓冲）
    cors_merge_enabled: bool = True

    # ========== 日志配置 ==========
    # 日志级别
    log_level: str = "INFO"
    # 是否使用 JSON 格式日志
    log_json_format: bool = True

    # ========== 管理端点配置 ==========
    # 管理端点前缀（第一段不能是合法域名，否则会遮蔽同名目标主机）
    admin_prefix: str = "/__iris"
    # 是否启用指标收集
    metrics_enabled: bool = True
    # 按目标主机统计的最大数量，超出部分计入 "other"
    metrics_max_targets: int = 256

    @model_validator(mode="after")
    def _check_static_target(self) -> "Settings":
        if self.routing_mode == RoutingMode.STATIC_TARGET:
            if not self.target_url:
                raise ValueError("static_target 模式必须配置 target_url")
            parsed = urlparse(self.target_url)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(f"target_url 缺少协议或主机: {self.target_url}")
        return self

    @model_validator(mode="after")
    def _check_admin_prefix(self) -> "Settings":
        segment = first_segment(self.admin_prefix)
        if not self.admin_prefix.startswith("/") or not segment:
            raise ValueError(f"admin_prefix 必须以 / 开头且非空: {self.admin_prefix!r}")
        if is_valid_domain(segment):
            raise ValueError(
                f"admin_prefix 的第一段 {segment!r} 是合法域名，会遮蔽同名目标主机"
            )
        return self

    @property
    def cors_configured(self) -> bool:
        """是否配置了任意 CORS 响应头"""
        return bool(
            self.cors_allow_origin or self.cors_allow_methods or self.cors_allow_headers
        )

    @property
    def buffer_responses(self) -> bool:
        """
        是否缓冲上游响应

        只有需要合并响应头时才缓冲，其余情况流式转发
        """
        return self.cors_merge_enabled and self.cors_configured

    @property
    def advertised_port(self) -> int:
        """启动日志中展示的端口"""
        return self.external_port if self.environment == "prod" else self.port


@lru_cache
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
