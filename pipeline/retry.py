"""
Retry Executor
有限次数重试 + 线性退避 (tenacity)
"""
from typing import Awaitable, Callable, Optional, TypeVar
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    stop_after_attempt,
    wait_fixed,
    wait_incrementing,
)

from utils.exceptions import InsightError
from .rate_gate import RateGate, SleepFn


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(InsightError):
    """重试次数耗尽"""

    def __init__(self, label: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(
            f"{label} failed after {attempts} attempts: {last_error}",
            {"label": label, "attempts": attempts},
        )
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    attempts: int,
    step_ms: int,
    label: str,
    linear: bool = True,
    sleep: Optional[SleepFn] = None,
) -> T:
    """
    执行 fn, 失败后重试

    第 k 次失败后等待 step_ms * k (linear=True) 或固定 step_ms 毫秒。
    全部失败时抛出 RetryExhausted, 携带最后一次异常。

    Args:
        fn: 无参协程工厂
        attempts: 最大尝试次数
        step_ms: 退避步长 (毫秒)
        label: 日志标签
        linear: 线性退避 / 固定间隔
        sleep: 自定义等待函数
    """
    step = step_ms / 1000.0
    wait = wait_incrementing(start=step, increment=step) if linear else wait_fixed(step)

    def _log_attempt(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(f"[Retry] {label} attempt {state.attempt_number}/{attempts} failed: {error}")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait,
        sleep=sleep or RateGate().sleep,
        before_sleep=_log_attempt,
    )

    try:
        async for attempt in retrying:
            with attempt:
                result = await fn()
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        logger.warning(f"[Retry] {label} giving up after {attempts} attempts: {last_error}")
        raise RetryExhausted(label, attempts, last_error) from last_error

    return result
