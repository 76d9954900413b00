"""
Image Pipeline
文章 HTML 中图片的发现 / 缓存 / 下载 / 压缩 / 改写

导出与单篇 PDF 共用; 预取复用其中的下载与压缩。
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import asyncio
import base64
import html as html_lib
import io
import logging
import re
import uuid

import httpx
from PIL import Image

from config import get_settings
from pipeline.rate_gate import RateGate
from pipeline.retry import RetryExhausted, retry_async
from storage import AssetCache, sniff_mime
from utils.exceptions import FetchError
from utils.http import with_gateway


logger = logging.getLogger(__name__)

DOWNLOAD_WINDOW = 15
DOWNLOAD_ATTEMPTS = 3
DOWNLOAD_PAUSE_MS = 500

IMAGE_HEADERS = {
    "Referer": "https://mp.weixin.qq.com/",
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
}

_HIDDEN_STYLE_RE = re.compile(r'style="[^"]*visibility:\s*hidden[^"]*"')
_DATA_SRC_RE = re.compile(r"data-src\s*=", re.IGNORECASE)


def normalize_image_url(raw_url: str) -> str:
    """HTML 反转义, 协议相对地址补全为 https"""
    url = html_lib.unescape(raw_url)
    if url.startswith("//"):
        url = f"https:{url}"
    return url


def extension_for(url: str) -> str:
    if "wx_fmt=png" in url:
        return "png"
    if "wx_fmt=gif" in url:
        return "gif"
    if "wx_fmt=webp" in url:
        return "webp"
    return "jpg"


def compress_image(data: bytes, max_width: int = 1280, quality: int = 75) -> bytes:
    """
    缩放到不超过 max_width 宽并重新编码为 JPEG

    无法解码或编码时原样返回。
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width > max_width:
                height = max(1, int(img.height * max_width / img.width))
                img = img.resize((max_width, height), Image.LANCZOS)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            buffer = io.BytesIO()
            img.save(buffer, format="JPEG", quality=quality)
            return buffer.getvalue()
    except Exception as e:
        logger.debug(f"[Images] Compression skipped: {e}")
        return data


@dataclass
class ImageProcessResult:
    html: str
    files: List[Path] = field(default_factory=list)
    found: int = 0


class ImagePipeline:
    """
    图片处理流水线

    Args:
        http_client: 共享 HTTP 客户端
        assets: 图片缓存
        gate: 节流器 (提供重试等待)
        host_pattern: 图片 CDN 域名正则
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        assets: AssetCache,
        gate: Optional[RateGate] = None,
        host_pattern: Optional[str] = None,
        window: int = DOWNLOAD_WINDOW,
    ):
        export = get_settings().export
        self.client = http_client
        self.assets = assets
        self.gate = gate or RateGate()
        self.window = max(1, int(window))
        self.max_width = export.max_image_width
        self.quality = export.jpeg_quality
        pattern = host_pattern or export.image_host_pattern
        self._url_re = re.compile(r"(?:https?:)?//" + pattern + r"/[^\"'\s]+")

    async def download(
        self,
        url: str,
        gateway: Optional[str] = None,
        authorization: Optional[str] = None,
        attempts: int = DOWNLOAD_ATTEMPTS,
    ) -> bytes:
        """下载图片 (可经网关); 全部失败时抛出 FetchError"""
        final_url = with_gateway(url, gateway, authorization)

        async def _get() -> bytes:
            response = await self.client.get(final_url, headers=IMAGE_HEADERS)
            if response.status_code != 200:
                raise FetchError(f"Image download failed (status {response.status_code}): {url}")
            return response.content

        try:
            return await retry_async(
                _get,
                attempts=attempts,
                step_ms=DOWNLOAD_PAUSE_MS,
                label=f"image {url}",
                linear=False,
                sleep=self.gate.sleep,
            )
        except RetryExhausted as e:
            raise FetchError(f"Failed to acquire image after retries: {url}", {"error": str(e.last_error)}) from e

    async def compress(self, data: bytes) -> bytes:
        return await asyncio.to_thread(compress_image, data, self.max_width, self.quality)

    def _discover(self, html: str) -> List[str]:
        """返回按出现顺序去重后的规范化 URL"""
        return list(dict.fromkeys(normalize_image_url(m.group(0)) for m in self._url_re.finditer(html)))

    def _rewrite(self, html: str, replacements: Dict[str, str]) -> str:
        """单次扫描改写; 同一 URL 的不同写法 (协议相对 / 转义) 一并替换"""

        def _sub(match) -> str:
            return replacements.get(normalize_image_url(match.group(0)), match.group(0))

        return self._url_re.sub(_sub, html)

    async def _acquire(
        self,
        url: str,
        images_dir: Path,
        gateway: Optional[str],
        authorization: Optional[str],
        embed: bool,
        compress: bool,
        semaphore: asyncio.Semaphore,
    ) -> Optional[Tuple[str, str, Path]]:
        async with semaphore:
            cached = await self.assets.aget(url)
            if cached is not None:
                data = cached.data
            else:
                try:
                    data = await self.download(url, gateway, authorization)
                except FetchError as e:
                    logger.error(f"[Images] {e.message}")
                    return None
                if compress:
                    data = await self.compress(data)

            mime_type = sniff_mime(data) or "application/octet-stream"
            if cached is None:
                await self.assets.aset(url, data, mime_type)

            filename = f"{uuid.uuid4()}.{extension_for(url)}"
            file_path = images_dir / filename
            try:
                await asyncio.to_thread(file_path.write_bytes, data)
            except OSError as e:
                logger.error(f"[Images] Failed to write image file {file_path}: {e}")

            if embed:
                replacement = f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
            else:
                replacement = f"images/{filename}"
            return url, replacement, file_path

    async def process(
        self,
        html: str,
        images_dir: Path,
        gateway: Optional[str] = None,
        authorization: Optional[str] = None,
        embed: bool = False,
        compress: bool = False,
    ) -> ImageProcessResult:
        """
        改写 HTML 中的图片引用

        Args:
            html: 原始 HTML
            images_dir: 图片文件写入目录
            gateway / authorization: 可选转发网关
            embed: True 时改写为 base64 data URI, 否则为 images/<file>
            compress: 新下载的图片是否压缩
        """
        processed = _HIDDEN_STYLE_RE.sub("", html)
        processed = _DATA_SRC_RE.sub("src=", processed)

        targets = self._discover(processed)
        logger.info(f"[Images] Found {len(targets)} unique images")
        if not targets:
            return ImageProcessResult(html=processed)

        images_dir.mkdir(parents=True, exist_ok=True)
        semaphore = asyncio.Semaphore(self.window)
        results = await asyncio.gather(*[
            self._acquire(url, images_dir, gateway, authorization, embed, compress, semaphore)
            for url in targets
        ])

        replacements = {}
        files = []
        for item in results:
            if item is None:
                continue
            url, replacement, file_path = item
            replacements[url] = replacement
            files.append(file_path)
        processed = self._rewrite(processed, replacements)

        logger.info(f"[Images] Processed images: {len(files)}/{len(targets)}")
        return ImageProcessResult(html=processed, files=files, found=len(targets))
