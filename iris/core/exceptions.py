"""
自定义异常模块
"""

from http import HTTPStatus


class IrisError(Exception):
    """Iris 基础异常"""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def reason(self) -> str:
        """HTTP 状态短语，如 Bad Request"""
        return HTTPStatus(self.status_code).phrase


class InvalidTargetError(IrisError):
    """目标域名不合法"""

    def __init__(self, candidate: str):
        self.candidate = candidate
        super().__init__(
            message=f"无效的目标域名: {candidate!r}",
            status_code=400,
        )


class MalformedDirectiveError(IrisError):
    """控制参数结构错误"""

    def __init__(self, detail: str):
        super().__init__(
            message=f"控制参数格式错误: {detail}",
            status_code=400,
        )


class UpstreamDispatchError(IrisError):
    """上游转发失败（连接、超时、TLS 等）"""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message=message, status_code=status_code)


class ClientDisconnectedError(IrisError):
    """客户端在上游响应前断开"""

    def __init__(self):
        super().__init__(
            message="客户端已断开，放弃上游请求",
            status_code=499,
        )

    @property
    def reason(self) -> str:
        return "Client Closed Request"
