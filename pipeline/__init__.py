"""
Pipeline Module
任务流水线基础组件: 节流 / 重试 / 规模策略 / 取消

resolver 与 scanner 请按子模块导入。
"""
from .rate_gate import RateGate
from .retry import RetryExhausted, retry_async
from .scaling import ScalingPolicy, scan_ceiling
from .cancellation import CancellationToken, TaskCancelled

__all__ = [
    "RateGate",
    "RetryExhausted",
    "retry_async",
    "ScalingPolicy",
    "scan_ceiling",
    "CancellationToken",
    "TaskCancelled",
]
