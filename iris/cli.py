"""
命令行入口

提供 CLI 参数解析
"""

import argparse
import os


def parse_args(argv=None):
    """解析命令行参数"""
    parser = argparse.ArgumentParser(
        description="Iris - 动态反向代理",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  iris                                         使用默认配置启动（按路径解析目标）
  iris -p 8080                                 使用 8080 端口启动
  iris --default-protocol http                 未指定协议时使用 http 转发
  iris --target-url http://localhost:9000      固定转发到 localhost:9000
  iris --debug --reload                        开发模式
        """,
    )

    parser.add_argument(
        "-H",
        "--host",
        type=str,
        default=None,
        help="监听地址 (默认: 127.0.0.1，仅本地访问)",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="监听端口 (默认: 3000)",
    )
    parser.add_argument(
        "--target-url",
        type=str,
        default=None,
        help="固定目标地址，指定后切换到 static_target 模式",
    )
    parser.add_argument(
        "--default-protocol",
        type=str,
        default=None,
        help="默认目标协议 (默认: https)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="启用调试模式",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="启用热重载（开发模式）",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别 (默认: INFO)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="Iris v0.1.0",
    )

    return parser.parse_args(argv)


def apply_args(args) -> None:
    """把命令行参数写入环境变量（覆盖配置文件）"""
    if args.host is not None:
        os.environ["IRIS_HOST"] = args.host
    if args.port is not None:
        os.environ["IRIS_PORT"] = str(args.port)
    if args.target_url is not None:
        os.environ["IRIS_TARGET_URL"] = args.target_url
        os.environ["IRIS_ROUTING_MODE"] = "static_target"
    if args.default_protocol is not None:
        os.environ["IRIS_DEFAULT_PROTOCOL"] = args.default_protocol
    if args.debug:
        os.environ["IRIS_DEBUG"] = "true"
        os.environ.setdefault("IRIS_ENVIRONMENT", "dev")
    if args.log_level is not None:
        os.environ["IRIS_LOG_LEVEL"] = args.log_level


def main():
    """CLI 主入口"""
    args = parse_args()
    apply_args(args)

    # 重新加载配置
    from iris.core.config import Settings

    settings = Settings()

    import uvicorn

    uvicorn.run(
        "iris.main:app",
        host=settings.host,
        port=settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
