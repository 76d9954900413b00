"""
Bulk Exporter
把任务的全部文章导出为 Markdown 或 PDF

每篇文章独立处理, 单篇失败只记入日志; 结果按文章序号重新排序后写入 summary.txt。
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple, Union
import asyncio
import json
import logging

import httpx

from models import ExportFormat, ExportResult, InsightArticle, InsightTask
from pipeline.rate_gate import RateGate
from storage import InsightDatabase, MIN_PAGE_TEXT_CHARS, PageCache, stripped_length
from utils.exceptions import FetchError, TaskNotFoundError
from utils.http import sanitize_gateways
from .fetcher import JITTER_MS, concurrency_window, fetch_html, pick_gateway
from .images import ImagePipeline
from .markdown import build_markdown_document, html_to_markdown, safe_name
from .renderers import BaseRenderer, get_renderer


logger = logging.getLogger(__name__)


class BulkExporter:
    """
    批量导出

    Args:
        db: 存储
        http_client: 共享 HTTP 客户端
        images: 图片流水线
        renderer: PDF 渲染器 (默认按配置创建)
        gate: 节流器
    """

    def __init__(
        self,
        db: InsightDatabase,
        http_client: httpx.AsyncClient,
        images: ImagePipeline,
        renderer: Optional[BaseRenderer] = None,
        gate: Optional[RateGate] = None,
    ):
        self.db = db
        self.client = http_client
        self.pages = PageCache(db)
        self.images = images
        self._renderer = renderer
        self.gate = gate or RateGate()

    @property
    def renderer(self) -> BaseRenderer:
        if self._renderer is None:
            self._renderer = get_renderer()
        return self._renderer

    async def _load_html(
        self,
        article: InsightArticle,
        gateway: Optional[str],
        authorization: Optional[str],
        log: List[str],
    ) -> Optional[str]:
        cached = await self.pages.aget(article.url)
        if cached is not None:
            log.append("   [Cache] Hit\n")
            return cached

        try:
            html = await fetch_html(self.client, article.url, gateway, authorization, self.gate)
        except FetchError as e:
            log.append(f"   [Error] Download failed: {e.message}\n")
            return None

        if stripped_length(html) < MIN_PAGE_TEXT_CHARS:
            log.append("   [Error] Download failed: Content too short\n")
            return None

        await self.pages.aset(article.url, html)
        return html

    async def _export_one(
        self,
        index: int,
        article: InsightArticle,
        export_dir: Path,
        export_format: ExportFormat,
        gateways: Optional[List[str]],
        authorization: Optional[str],
        semaphore: asyncio.Semaphore,
    ) -> Tuple[int, str]:
        async with semaphore:
            if index > 0:
                await self.gate.wait(*JITTER_MS)

            log = [f"{index + 1}. {article.title} ({article.url})\n"]
            if article.insight:
                log.append(f"   Insight: {article.insight}\n")

            try:
                gateway = pick_gateway(gateways, self.gate)
                html = await self._load_html(article, gateway, authorization, log)
                if html is None:
                    return index, "".join(log)

                processed = await self.images.process(
                    html,
                    export_dir / "images",
                    gateway=gateway,
                    authorization=authorization,
                    embed=False,
                )
                name = f"{index + 1}_{safe_name(article.title)}"

                if export_format == ExportFormat.PDF:
                    pdf_path = export_dir / f"{name}.pdf"
                    try:
                        await self.renderer.render(processed.html, pdf_path, article.title, export_dir)
                        log.append("   [Success] PDF generated.\n")
                    except Exception as e:
                        log.append(f"   [Error] PDF gen failed: {e}\n")
                else:
                    body = html_to_markdown(processed.html, article.url)
                    document = build_markdown_document(article, body)
                    try:
                        await asyncio.to_thread((export_dir / f"{name}.md").write_text, document, "utf-8")
                        log.append("   [Success] Markdown saved.\n")
                    except OSError as e:
                        log.append(f"   [Error] Write MD failed: {e}\n")
            except Exception as e:
                logger.error(f"[Exporter] Article {index + 1} failed: {e}")
                log.append(f"   [Error] {e}\n")

            return index, "".join(log)

    @staticmethod
    def _summary_header(task: InsightTask) -> str:
        keywords = json.dumps(task.keywords, ensure_ascii=False)
        return (
            f"Task Prompt: {task.prompt}\n"
            f"Target: {task.target_count}\n"
            f"Processed: {task.processed_count}\n"
            f"Keywords: {keywords}\n\n"
        )

    async def export(
        self,
        task_id: str,
        target_dir: Union[str, Path],
        export_format: Union[ExportFormat, str] = ExportFormat.MARKDOWN,
        gateways: Optional[List[str]] = None,
        authorization: Optional[str] = None,
    ) -> ExportResult:
        """
        导出任务文章

        Raises:
            TaskNotFoundError: 任务不存在
        """
        export_format = ExportFormat(export_format)
        task = await self.db.aget_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")

        articles = await self.db.alist_articles(task_id)
        if not articles:
            return ExportResult(success=False, message="No articles to export")

        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M")
        export_dir = Path(target_dir) / f"{safe_name(task.prompt)}_export_{stamp}"
        (export_dir / "images").mkdir(parents=True, exist_ok=True)

        gateways = sanitize_gateways(gateways)
        window = concurrency_window(gateways, export_format.value)
        logger.info(
            f"[Exporter] Task {task_id}: exporting {len(articles)} articles as "
            f"{export_format.value} to {export_dir} (window {window})"
        )

        semaphore = asyncio.Semaphore(window)
        results = await asyncio.gather(*[
            self._export_one(i, article, export_dir, export_format, gateways, authorization, semaphore)
            for i, article in enumerate(articles)
        ])
        results.sort(key=lambda item: item[0])

        summary = self._summary_header(task) + "".join(entry for _, entry in results)
        await asyncio.to_thread((export_dir / "summary.txt").write_text, summary, "utf-8")

        logger.info(f"[Exporter] Task {task_id}: export completed to {export_dir}")
        return ExportResult(
            success=True,
            message=f"Export completed to {export_dir}",
            export_dir=str(export_dir),
        )
