"""
Markdown Rendering
文章 HTML -> 带 front matter 的 Markdown 文档
"""
from typing import Optional
import logging
import re

from bs4 import BeautifulSoup
import trafilatura

from models import InsightArticle


logger = logging.getLogger(__name__)

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.DOTALL)
_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.DOTALL)
_JS_LINK_RE = re.compile(
    r"""<a[^>]+href\s*=\s*["']javascript:[^"']*["'][^>]*>.*?</a>""",
    re.IGNORECASE,
)
_UNSAFE_NAME_RE = re.compile(r"[^\w ]")


def safe_name(value: str) -> str:
    """非字母数字、非空格的字符替换为 '_'"""
    return _UNSAFE_NAME_RE.sub("_", value or "")


def clean_html_for_markdown(html: str) -> str:
    """去掉 script / style 以及 javascript: 链接"""
    cleaned = _SCRIPT_RE.sub("", html)
    cleaned = _STYLE_RE.sub("", cleaned)
    cleaned = _JS_LINK_RE.sub("", cleaned)
    return cleaned


def _fallback_text(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    node = soup.find(id="js_content") or soup.body or soup
    return node.get_text("\n", strip=True)


def html_to_markdown(html: str, url: Optional[str] = None) -> str:
    """trafilatura 转换, 结果为空时退回纯文本正文"""
    cleaned = clean_html_for_markdown(html)
    try:
        converted = trafilatura.extract(
            cleaned,
            url=url,
            output_format="markdown",
            include_images=True,
            include_links=True,
            include_tables=True,
            include_formatting=True,
            favor_recall=True,
        )
    except Exception as e:
        logger.warning(f"[Markdown] trafilatura conversion failed for {url}: {e}")
        converted = None

    if converted and converted.strip():
        return converted
    return _fallback_text(cleaned)


def build_markdown_document(article: InsightArticle, body: str) -> str:
    return (
        "---\n"
        f"title: {article.title}\n"
        f"url: {article.url}\n"
        f"date: {article.publish_time or 0}\n"
        "---\n\n"
        f"# {article.title}\n\n"
        f"> Insight: {article.insight or ''}\n\n"
        f"{body}"
    )
