"""
Outputs Module
导出层 - 文章下载、图片处理、Markdown / PDF 导出与预取
"""

from .fetcher import concurrency_window, fetch_html, pick_gateway
from .images import ImagePipeline, ImageProcessResult, compress_image, normalize_image_url
from .markdown import build_markdown_document, clean_html_for_markdown, html_to_markdown, safe_name
from .renderers import (
    BaseRenderer,
    PrinceRenderer,
    WeasyPrintRenderer,
    build_print_document,
    get_renderer,
)
from .exporter import BulkExporter
from .prefetch import Prefetcher, find_image_urls
from .single_pdf import render_single_pdf

__all__ = [
    # Fetch
    "concurrency_window",
    "fetch_html",
    "pick_gateway",
    # Images
    "ImagePipeline",
    "ImageProcessResult",
    "compress_image",
    "normalize_image_url",
    # Markdown
    "build_markdown_document",
    "clean_html_for_markdown",
    "html_to_markdown",
    "safe_name",
    # Renderers
    "BaseRenderer",
    "PrinceRenderer",
    "WeasyPrintRenderer",
    "build_print_document",
    "get_renderer",
    # Pipelines
    "BulkExporter",
    "Prefetcher",
    "find_image_urls",
    "render_single_pdf",
]
