"""
Base Scraper
所有抓取器的抽象基类
"""
from abc import ABC, abstractmethod
from typing import Optional
import logging

import httpx

from config import get_settings
from utils.http import build_http_client


logger = logging.getLogger(__name__)


class BaseScraper(ABC):
    """
    抓取器抽象基类

    HTTP 客户端可由外部注入 (进程共享); 未注入时按需创建, 并在 close() 中释放。
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings()
        self._session = http_client
        self._owns_session = http_client is None

    @property
    @abstractmethod
    def name(self) -> str:
        """返回抓取器名称"""
        pass

    def _get_session(self) -> httpx.AsyncClient:
        """获取或创建 HTTP 会话"""
        if self._session is None:
            self._session = build_http_client()
            self._owns_session = True
        return self._session

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    async def close(self):
        """清理资源 (只关闭自己创建的客户端)"""
        if self._session is not None and self._owns_session:
            await self._session.aclose()
        self._session = None

    def _log_search(self, query: str, count: int):
        """记录搜索日志"""
        logger.info(f"[{self.name}] Search '{query}' returned {count} results")
