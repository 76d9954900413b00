"""
Single Document PDF
单篇 HTML -> PDF 字节 (图片内嵌为 data URI, 临时目录用完即删)
"""
from pathlib import Path
from typing import Optional
import asyncio
import logging
import shutil
import tempfile
import uuid

from utils.exceptions import RenderError
from .images import ImagePipeline
from .renderers import BaseRenderer


logger = logging.getLogger(__name__)


async def render_single_pdf(
    html: str,
    images: ImagePipeline,
    renderer: BaseRenderer,
    filename: Optional[str] = None,
) -> bytes:
    """
    渲染单篇文章 PDF

    Raises:
        RenderError: html 为空或渲染失败
    """
    if not html:
        raise RenderError("Missing html content")

    temp_id = str(uuid.uuid4())
    temp_dir = Path(tempfile.gettempdir()) / "insight-pdf" / temp_id
    images_dir = temp_dir / "images"
    images_dir.mkdir(parents=True, exist_ok=True)

    try:
        processed = await images.process(html, images_dir, embed=True)
        pdf_path = temp_dir / f"{temp_id}.pdf"
        await renderer.render(processed.html, pdf_path, filename or "article", temp_dir)
        try:
            return await asyncio.to_thread(pdf_path.read_bytes)
        except OSError as e:
            raise RenderError(f"Failed to read PDF: {e}") from e
    finally:
        await asyncio.to_thread(shutil.rmtree, temp_dir, True)
        logger.debug(f"[PDF] Cleaned up {temp_dir}")
