"""
Cancellation Token
协作式取消: 内存标志 + 数据库状态双通道
"""
from typing import Awaitable, Callable, Optional
import asyncio
import logging


logger = logging.getLogger(__name__)

RESOLVER_CANCEL_REASON = "Cancelled by user"
SCAN_CANCEL_REASON = "User Cancelled"
SHUTDOWN_CANCEL_REASON = "Interrupted by shutdown"


class TaskCancelled(Exception):
    """任务在轮询点被取消"""

    def __init__(self, reason: str = SCAN_CANCEL_REASON):
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """
    任务级取消令牌

    cancel() 只置位标志, 由任务在轮询点自行退出。
    probe 为可选的外部状态检查 (例如数据库中的 cancelling 状态),
    探测为真时同样会置位令牌。
    """

    def __init__(self, probe: Optional[Callable[[], Awaitable[bool]]] = None):
        self._event = asyncio.Event()
        self._probe = probe

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._probe is not None:
            try:
                if await self._probe():
                    self._event.set()
                    return True
            except Exception as e:
                logger.warning(f"[Cancel] status probe failed: {e}")
        return False

    async def raise_if_cancelled(self, reason: str = SCAN_CANCEL_REASON) -> None:
        if await self.is_cancelled():
            raise TaskCancelled(reason)
