"""
指标收集模块

收集和导出代理指标（Prometheus 格式）
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["指标"])

# 被拒绝的请求（没有合法目标）
REJECTED_TARGET = "-"
# 超出 max_targets 后新出现的目标主机统一计入此项（下划线保证不与合法域名重名）
OVERFLOW_TARGET = "_other"


@dataclass
class MetricsBucket:
    """指标存储桶"""

    # 请求计数
    request_count: int = 0
    # 错误计数（状态码 >= 400）
    error_count: int = 0
    # 总延迟（毫秒）
    total_latency_ms: float = 0

    # 状态码分布
    status_codes: Dict[int, int] = field(default_factory=lambda: defaultdict(int))

    # 延迟样本（用于计算分位数）
    latencies: List[float] = field(default_factory=list)

    @property
    def avg_latency_ms(self) -> float:
        if self.request_count == 0:
            return 0
        return self.total_latency_ms / self.request_count


class MetricsCollector:
    """
    指标收集器

    按全局和目标主机两个维度聚合；被拒绝的请求（无合法目标）记在 "-" 下

    目标主机来自请求路径，由客户端决定，因此按主机统计的条目数有上限：
    已统计 max_targets 个主机后，新主机一律计入 "_other"
    """

    def __init__(self, window_size: int = 1000, max_targets: int = 256):
        """
        Args:
            window_size: 延迟样本窗口大小
            max_targets: 单独统计的目标主机数量上限
        """
        self.window_size = window_size
        self.max_targets = max_targets
        self._global = MetricsBucket()
        self._by_target: Dict[str, MetricsBucket] = {}
        self._lock = asyncio.Lock()

    async def record(self, target_host: str, status_code: int, latency_ms: float) -> None:
        """
        记录请求指标

        Args:
            target_host: 目标主机
            status_code: 响应状态码
            latency_ms: 延迟（毫秒）
        """
        async with self._lock:
            for bucket in (self._global, self._target_bucket(target_host)):
                bucket.request_count += 1
                bucket.total_latency_ms += latency_ms
                bucket.status_codes[status_code] += 1

                if status_code >= 400:
                    bucket.error_count += 1

                # 维护延迟窗口
                bucket.latencies.append(latency_ms)
                if len(bucket.latencies) > self.window_size:
                    bucket.latencies.pop(0)

    def _target_bucket(self, target_host: str) -> MetricsBucket:
        key = target_host or REJECTED_TARGET
        if key not in self._by_target and len(self._by_target) >= self.max_targets:
            key = OVERFLOW_TARGET
        return self._by_target.setdefault(key, MetricsBucket())

    def _get_percentile(self, latencies: List[float], p: float) -> float:
        """计算分位数"""
        if not latencies:
            return 0

        sorted_latencies = sorted(latencies)
        index = int(len(sorted_latencies) * p / 100)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    def export_prometheus(self) -> str:
        """导出 Prometheus 格式指标"""
        lines = [
            "# HELP iris_requests_total Total number of proxied requests",
            "# TYPE iris_requests_total counter",
            f"iris_requests_total {self._global.request_count}",
            "# HELP iris_errors_total Total number of error responses",
            "# TYPE iris_errors_total counter",
            f"iris_errors_total {self._global.error_count}",
            "# HELP iris_latency_avg_ms Average latency in milliseconds",
            "# TYPE iris_latency_avg_ms gauge",
            f"iris_latency_avg_ms {self._global.avg_latency_ms:.2f}",
        ]

        for p in (50, 95, 99):
            value = self._get_percentile(self._global.latencies, p)
            lines.append(f"# HELP iris_latency_p{p}_ms {p}th percentile latency")
            lines.append(f"# TYPE iris_latency_p{p}_ms gauge")
            lines.append(f"iris_latency_p{p}_ms {value:.2f}")

        lines.append("# HELP iris_responses_total Responses by status code")
        lines.append("# TYPE iris_responses_total counter")
        for status_code, count in sorted(self._global.status_codes.items()):
            lines.append(f'iris_responses_total{{status="{status_code}"}} {count}')

        lines.append("# HELP iris_target_requests_total Requests by target host")
        lines.append("# TYPE iris_target_requests_total counter")
        for target, bucket in self._by_target.items():
            safe_target = target.replace('"', '\\"')
            lines.append(f'iris_target_requests_total{{target="{safe_target}"}} {bucket.request_count}')

        lines.append("# HELP iris_target_errors_total Errors by target host")
        lines.append("# TYPE iris_target_errors_total counter")
        for target, bucket in self._by_target.items():
            safe_target = target.replace('"', '\\"')
            lines.append(f'iris_target_errors_total{{target="{safe_target}"}} {bucket.error_count}')

        return "\n".join(lines)

    def get_summary(self) -> Dict:
        """获取指标摘要"""
        total = self._global.request_count
        return {
            "total_requests": total,
            "total_errors": self._global.error_count,
            "error_rate": self._global.error_count / total if total > 0 else 0,
            "avg_latency_ms": round(self._global.avg_latency_ms, 2),
            "p50_latency_ms": round(self._get_percentile(self._global.latencies, 50), 2),
            "p95_latency_ms": round(self._get_percentile(self._global.latencies, 95), 2),
            "p99_latency_ms": round(self._get_percentile(self._global.latencies, 99), 2),
            "status_codes": dict(self._global.status_codes),
            "targets": {
                target: {
                    "requests": bucket.request_count,
                    "errors": bucket.error_count,
                    "avg_latency_ms": round(bucket.avg_latency_ms, 2),
                }
                for target, bucket in self._by_target.items()
            },
        }


@router.get("/metrics")
async def get_metrics(request: Request):
    """获取 Prometheus 格式指标"""
    collector: MetricsCollector = request.app.state.metrics
    return PlainTextResponse(
        content=collector.export_prometheus(),
        media_type="text/plain",
    )


@router.get("/metrics/summary")
async def get_metrics_summary(request: Request):
    """获取指标摘要"""
    return request.app.state.metrics.get_summary()
