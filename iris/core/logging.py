"""
日志配置模块

提供结构化 JSON 格式日志和标准格式日志
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# 通过 extra 传入、直接输出到 JSON 顶层的字段
_CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "latency_ms",
    "client_ip",
    "target_host",
    "upstream_url",
)


class JSONFormatter(logging.Formatter):
    """
    JSON 格式日志格式器

    输出格式:
    {
        "timestamp": "2024-01-01T12:00:00.000000Z",
        "level": "INFO",
        "logger": "iris.gateway.orchestrator",
        "message": "代理请求完成",
        "request_id": "abc-123",
        "target_host": "example.com",
        ...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
        log_data: Dict[str, Any] = {
            "timestamp": timestamp + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        # 添加其他自定义字段
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        # 异常信息
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None,
) -> logging.Logger:
    """
    配置日志系统

    Args:
        level: 日志级别（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        json_format: 是否使用 JSON 格式
        logger_name: 日志器名称，None 表示配置根日志器

    Returns:
        配置好的日志器
    """
    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    # 移除现有的处理器
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    获取指定名称的日志器

    Args:
        name: 日志器名称（建议使用模块名，如 iris.gateway）
    """
    return logging.getLogger(name)
