from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from iris.core.config import Settings
from iris.main import create_app


class UpstreamRecorder:
    """
    假上游：记录收到的请求并返回预设响应

    响应体用 ByteStream 包装，保持未读取状态，与真实流式响应一致
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.headers: dict = {"content-type": "text/plain"}
        self.body = b"upstream ok"
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            stream=httpx.ByteStream(self.body),
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_settings(**overrides) -> Settings:
    overrides.setdefault("log_json_format", False)
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


@pytest.fixture
def make_client(upstream) -> Callable[..., TestClient]:
    """按配置覆盖项创建 TestClient（需在 with 块中使用以触发 lifespan）"""

    def _make(**overrides) -> TestClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
        app = create_app(settings=make_settings(**overrides), http_client=http_client)
        return TestClient(app)

    return _make
