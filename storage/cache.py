"""
Cache
页面缓存 (按 URL 的 md5) 与图片资源缓存 (按规范化 URL)

缓存缺失不是错误; 校验失败的图片条目按未命中处理。
"""
from dataclasses import dataclass
from typing import Optional
import asyncio
import hashlib
import logging

from .database import InsightDatabase


logger = logging.getLogger(__name__)

MIN_IMAGE_BYTES = 100
MIN_PAGE_TEXT_CHARS = 500


def page_key(url: str) -> str:
    """页面缓存键: md5(url) 十六进制"""
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def sniff_mime(data: bytes) -> Optional[str]:
    """按文件头识别图片类型"""
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def is_valid_image(data: Optional[bytes]) -> bool:
    """超过 100 字节且具有 JPEG/PNG/GIF/WebP 文件头"""
    if not data or len(data) <= MIN_IMAGE_BYTES:
        return False
    return sniff_mime(data) is not None


def stripped_length(html: Optional[str]) -> int:
    return len((html or "").strip())


@dataclass
class CachedAsset:
    url: str
    data: bytes
    mime_type: str
    size: int
    fetched_at: int


class PageCache:
    """文章 HTML 缓存"""

    def __init__(self, db: InsightDatabase):
        self.db = db

    def get(self, url: str) -> Optional[str]:
        row = self.db.get_page(page_key(url))
        return row["html"] if row else None

    def set(self, url: str, html: str) -> None:
        self.db.put_page(page_key(url), url, html)

    async def aget(self, url: str) -> Optional[str]:
        return await asyncio.to_thread(self.get, url)

    async def aset(self, url: str, html: str) -> None:
        await asyncio.to_thread(self.set, url, html)


class AssetCache:
    """图片缓存 (读取时校验)"""

    def __init__(self, db: InsightDatabase):
        self.db = db

    def get(self, url: str) -> Optional[CachedAsset]:
        row = self.db.get_asset(url)
        if not row:
            return None
        data = bytes(row["data"])
        if not is_valid_image(data):
            logger.debug(f"[AssetCache] Invalid cached entry ignored: {url}")
            return None
        return CachedAsset(
            url=row["url"],
            data=data,
            mime_type=row["mime_type"],
            size=int(row["size"]),
            fetched_at=int(row["fetched_at"]),
        )

    def set(self, url: str, data: bytes, mime_type: str) -> None:
        self.db.put_asset(url, data, mime_type)

    async def aget(self, url: str) -> Optional[CachedAsset]:
        return await asyncio.to_thread(self.get, url)

    async def aset(self, url: str, data: bytes, mime_type: str) -> None:
        await asyncio.to_thread(self.set, url, data, mime_type)
