"""
Prefetcher
提前下载任务文章页面与图片到缓存, 不写任何文件
"""
from typing import List, Optional
import asyncio
import logging
import re

import httpx

from models import InsightArticle, PrefetchResult, PrefetchStats
from pipeline.rate_gate import RateGate
from storage import AssetCache, InsightDatabase, MIN_PAGE_TEXT_CHARS, PageCache, sniff_mime, stripped_length
from utils.exceptions import FetchError, TaskNotFoundError
from utils.http import sanitize_gateways
from .fetcher import concurrency_window, fetch_html, pick_gateway
from .images import ImagePipeline, normalize_image_url


logger = logging.getLogger(__name__)

_IMG_ATTR_RE = re.compile(r"""(?:data-src|src)\s*=\s*["']((?:https?:)?//[^"']+)["']""", re.IGNORECASE)


def find_image_urls(html: str) -> List[str]:
    """src / data-src 属性中的 http(s) 与协议相对图片地址, 按出现顺序去重"""
    return list(dict.fromkeys(normalize_image_url(match) for match in _IMG_ATTR_RE.findall(html)))


class Prefetcher:
    """预取文章与图片"""

    def __init__(
        self,
        db: InsightDatabase,
        http_client: httpx.AsyncClient,
        images: ImagePipeline,
        gate: Optional[RateGate] = None,
    ):
        self.db = db
        self.client = http_client
        self.pages = PageCache(db)
        self.assets = AssetCache(db)
        self.images = images
        self.gate = gate or RateGate()

    async def _load_html(
        self,
        article: InsightArticle,
        gateway: Optional[str],
        authorization: Optional[str],
        stats: PrefetchStats,
    ) -> Optional[str]:
        cached = await self.pages.aget(article.url)
        if cached is not None:
            if stripped_length(cached) >= MIN_PAGE_TEXT_CHARS:
                logger.info("   [Cache] Hit")
                stats.article_success += 1
                return cached
            logger.info(f"   [Cache] Invalid (< {MIN_PAGE_TEXT_CHARS} chars). Re-fetching...")

        try:
            html = await fetch_html(self.client, article.url, gateway, authorization, self.gate)
        except FetchError as e:
            logger.error(f"   [Error] Fetch failed for {article.url}: {e.message}")
            stats.article_failed += 1
            return None

        if stripped_length(html) < MIN_PAGE_TEXT_CHARS:
            logger.warning(f"   [Warning] Fetched content short < {MIN_PAGE_TEXT_CHARS}")
        await self.pages.aset(article.url, html)
        stats.article_success += 1
        logger.info("   [Success] Fetched & Saved")
        return html

    async def _store_image(
        self,
        url: str,
        gateways: Optional[List[str]],
        authorization: Optional[str],
    ) -> bool:
        if await self.assets.aget(url) is not None:
            return True
        try:
            data = await self.images.download(
                url,
                pick_gateway(gateways, self.gate),
                authorization,
                attempts=1,
            )
        except FetchError as e:
            logger.debug(f"   [Images] Download failed: {e.message}")
            return False
        data = await self.images.compress(data)
        await self.assets.aset(url, data, sniff_mime(data) or "image/jpeg")
        return True

    async def _prefetch_one(
        self,
        index: int,
        article: InsightArticle,
        gateways: Optional[List[str]],
        authorization: Optional[str],
        semaphore: asyncio.Semaphore,
    ) -> PrefetchStats:
        stats = PrefetchStats()
        async with semaphore:
            logger.info(f"[Prefetch] {index + 1}. {article.title} ({article.url})")

            gateway = pick_gateway(gateways, self.gate)
            html = await self._load_html(article, gateway, authorization, stats)
            if html is None:
                return stats

            urls = find_image_urls(html)
            ok = 0
            for url in urls:
                if await self._store_image(url, gateways, authorization):
                    ok += 1
            stats.image_success += ok
            stats.image_failed += len(urls) - ok
            logger.info(f"   [Images] Processed {ok}/{len(urls)} (Compressed)")
        return stats

    async def prefetch(
        self,
        task_id: str,
        gateways: Optional[List[str]] = None,
        authorization: Optional[str] = None,
    ) -> PrefetchResult:
        """
        预取任务全部文章

        Raises:
            TaskNotFoundError: 任务不存在
        """
        if await self.db.aget_task(task_id) is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")

        articles = await self.db.alist_articles(task_id)
        gateways = sanitize_gateways(gateways)
        window = concurrency_window(gateways)
        logger.info(f"[Prefetch] Task {task_id}: {len(articles)} articles (window {window})")

        semaphore = asyncio.Semaphore(window)
        results = await asyncio.gather(*[
            self._prefetch_one(i, article, gateways, authorization, semaphore)
            for i, article in enumerate(articles)
        ])

        stats = PrefetchStats()
        for item in results:
            stats = stats.merge(item)
        logger.info(
            f"[Prefetch] Task {task_id} done: articles {stats.article_success} ok / "
            f"{stats.article_failed} failed, images {stats.image_success} ok / {stats.image_failed} failed"
        )
        return PrefetchResult(success=True, message="Prefetch completed.", stats=stats)
