"""
PDF Renderers
把文章 HTML 包装成打印友好的文档并渲染为 PDF

- WeasyPrintRenderer: 进程内渲染 (默认)
- PrinceRenderer: 调用外部 Prince XML 可执行文件
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import asyncio
import html as html_lib
import logging
import tempfile
import uuid

from config import get_settings
from utils.exceptions import ConfigurationError, RenderError


logger = logging.getLogger(__name__)

PRINT_STYLESHEET = """
    * {
      font-family: "Noto Sans CJK SC", "WenQuanYi Micro Hei", "Microsoft YaHei", "SimHei", sans-serif !important;
      overflow-wrap: break-word;
      word-wrap: break-word;
      max-width: 100% !important;
      height: auto !important;
      position: static !important;
      float: none !important;
      margin-left: 0 !important;
      margin-right: 0 !important;
      text-indent: 0 !important;
    }
    html, body {
      font-family: "Noto Sans CJK SC", "WenQuanYi Micro Hei", "Microsoft YaHei", "SimHei", sans-serif !important;
      font-size: 14px;
      line-height: 1.6;
      color: #333;
      margin: 0;
      padding: 0;
    }
    img {
      max-width: 100% !important;
      height: auto !important;
      display: block;
      margin: 10px auto !important;
    }
    section, div, p {
      max-width: 100% !important;
      box-sizing: border-box !important;
      height: auto !important;
    }
    h1, h2, h3 {
      font-weight: bold;
      page-break-after: avoid;
      line-height: 1.4;
      margin-top: 1em !important;
      margin-bottom: 0.5em !important;
    }
    p {
      orphans: 3;
      widows: 3;
      margin-bottom: 1em !important;
    }
"""


def build_print_document(body_html: str, title: str) -> str:
    """包装为完整 HTML 文档 (强制 CJK 字体与版式重置)"""
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        '  <meta charset="utf-8">\n'
        f"  <title>{html_lib.escape(title or '')}</title>\n"
        f"  <style>{PRINT_STYLESHEET}  </style>\n"
        "</head>\n<body>\n"
        f"{body_html}\n"
        "</body>\n</html>"
    )


class BaseRenderer(ABC):
    """PDF 渲染器基类"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def render(
        self,
        body_html: str,
        output_path: Path,
        title: str,
        working_dir: Optional[Path] = None,
    ) -> Path:
        """
        渲染 PDF 到 output_path

        working_dir 用于解析 HTML 中的相对图片路径。

        Raises:
            RenderError: 渲染失败
        """
        pass


class WeasyPrintRenderer(BaseRenderer):
    """WeasyPrint 渲染 (CPU 密集, 放到线程中执行)"""

    @property
    def name(self) -> str:
        return "weasyprint"

    @staticmethod
    def _write_pdf(document: str, output_path: Path, base_url: Optional[str]) -> None:
        from weasyprint import HTML

        HTML(string=document, base_url=base_url).write_pdf(str(output_path))

    async def render(
        self,
        body_html: str,
        output_path: Path,
        title: str,
        working_dir: Optional[Path] = None,
    ) -> Path:
        document = build_print_document(body_html, title)
        base_url = str(working_dir) if working_dir else None
        logger.info(f"[PDF] Generating PDF with WeasyPrint: {output_path}")
        try:
            await asyncio.to_thread(self._write_pdf, document, Path(output_path), base_url)
        except Exception as e:
            logger.error(f"[PDF] WeasyPrint failed: {e}")
            raise RenderError(f"WeasyPrint failed: {e}") from e
        return Path(output_path)


class PrinceRenderer(BaseRenderer):
    """Prince XML 渲染 (外部进程)"""

    def __init__(self, prince_path: Optional[str] = None):
        self.prince_path = prince_path or get_settings().export.prince_path

    @property
    def name(self) -> str:
        return "prince"

    async def render(
        self,
        body_html: str,
        output_path: Path,
        title: str,
        working_dir: Optional[Path] = None,
    ) -> Path:
        work_dir = Path(working_dir) if working_dir else Path(tempfile.gettempdir()) / "insight-pdf"
        work_dir.mkdir(parents=True, exist_ok=True)
        temp_html = work_dir / f"{uuid.uuid4()}.html"
        temp_html.write_text(build_print_document(body_html, title), encoding="utf-8")

        logger.info(f"[PDF] Generating PDF with Prince: {temp_html}")
        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    self.prince_path,
                    str(temp_html),
                    "--verbose",
                    "-o",
                    str(output_path),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise RenderError(
                    "Prince XML not found. Please install from https://www.princexml.com/"
                ) from e
            except OSError as e:
                raise RenderError(f"Failed to execute Prince: {e}") from e

            _, stderr = await process.communicate()
            if process.returncode != 0:
                message = stderr.decode("utf-8", errors="replace")
                logger.error(f"[PDF] Prince failed: {message}")
                raise RenderError(f"Prince failed: {message}")
        finally:
            temp_html.unlink(missing_ok=True)

        return Path(output_path)


def get_renderer(name: Optional[str] = None) -> BaseRenderer:
    """
    按名称创建渲染器 (默认读取 EXPORT_RENDERER)

    Raises:
        ConfigurationError: 未知渲染器
    """
    export = get_settings().export
    key = (name or export.renderer or "weasyprint").strip().lower()
    if key == "weasyprint":
        return WeasyPrintRenderer()
    if key == "prince":
        return PrinceRenderer(export.prince_path)
    raise ConfigurationError(f"Unknown PDF renderer: {key}", {"available": ["weasyprint", "prince"]})
