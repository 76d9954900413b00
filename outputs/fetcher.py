"""
Article Fetcher
文章页面下载 (可经转发网关) 与并发窗口计算
"""
from typing import List, Optional
import logging

import httpx

from pipeline.rate_gate import RateGate
from pipeline.retry import RetryExhausted, retry_async
from utils.exceptions import FetchError
from utils.http import with_gateway


logger = logging.getLogger(__name__)

FETCH_ATTEMPTS = 3
FETCH_PAUSE_MS = 1000
JITTER_MS = (100, 1000)
PDF_WINDOW = 10


def concurrency_window(gateways: Optional[List[str]], export_format: Optional[str] = None) -> int:
    """
    并发窗口

    - PDF 导出固定 10
    - 未提供网关: 1
    - 网关列表为空: 2
    - 其余: clamp(len // 2, 3, 20)
    """
    if export_format == "pdf":
        return PDF_WINDOW
    if gateways is None:
        return 1
    if not gateways:
        return 2
    return max(3, min(20, len(gateways) // 2))


def pick_gateway(gateways: Optional[List[str]], gate: RateGate) -> Optional[str]:
    """每篇文章随机选择一个网关"""
    if not gateways:
        return None
    return gate.choice(gateways)


async def fetch_html(
    client: httpx.AsyncClient,
    url: str,
    gateway: Optional[str] = None,
    authorization: Optional[str] = None,
    gate: Optional[RateGate] = None,
) -> str:
    """
    下载文章 HTML, 最多 3 次, 每次失败后等待 1 秒

    Raises:
        FetchError: 全部尝试失败 (非 2xx 也视为失败)
    """
    gate = gate or RateGate()
    final_url = with_gateway(url, gateway, authorization)

    async def _get() -> str:
        response = await client.get(final_url)
        if not response.is_success:
            raise FetchError(f"Status: {response.status_code}")
        return response.text

    try:
        return await retry_async(
            _get,
            attempts=FETCH_ATTEMPTS,
            step_ms=FETCH_PAUSE_MS,
            label=f"fetch {url}",
            linear=False,
            sleep=gate.sleep,
        )
    except RetryExhausted as e:
        raise FetchError(f"{e.last_error}", {"url": url}) from e
