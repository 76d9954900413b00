"""
Rate Gate
随机延迟节流器, 所有上游调用前的等待都经过这里
"""
from typing import Awaitable, Callable, Optional
import asyncio
import logging
import random


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


async def _asyncio_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class RateGate:
    """
    在 [low_ms, high_ms] 区间内均匀随机等待

    sleep 可注入, 测试中替换为不等待的协程。
    """

    def __init__(self, sleep: Optional[SleepFn] = None, rng: Optional[random.Random] = None):
        self.sleep: SleepFn = sleep or _asyncio_sleep
        self._rng = rng or random.Random()

    def pick_ms(self, low_ms: int, high_ms: int) -> int:
        if high_ms < low_ms:
            low_ms, high_ms = high_ms, low_ms
        return self._rng.randint(low_ms, high_ms)

    def choice(self, items):
        return self._rng.choice(items)

    async def wait(self, low_ms: int, high_ms: int) -> int:
        delay = self.pick_ms(low_ms, high_ms)
        await self.sleep(delay / 1000.0)
        return delay

    async def pause(self, ms: int) -> None:
        """固定时长等待"""
        if ms > 0:
            await self.sleep(ms / 1000.0)
