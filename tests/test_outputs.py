"""
Tests for bulk export, prefetch, image pipeline and single-document PDF
"""
from pathlib import Path
from typing import Dict, List
import re
import time

import httpx
import pytest
import pytest_asyncio

from models import ExportFormat, InsightArticle
from outputs import BaseRenderer, BulkExporter, ImagePipeline, Prefetcher, find_image_urls, render_single_pdf
from storage import AssetCache, PageCache
from utils.exceptions import RenderError, TaskNotFoundError
from utils.http import build_http_client


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"0" * 300
LONG_TEXT = "供应链风险分析与行业洞察。" * 60
IMG_OK = "https://mmbiz.qpic.cn/pic1?wx_fmt=png"
IMG_BROKEN = "https://mmbiz.qpic.cn/broken?wx_fmt=jpeg"

LONG_PAGE = (
    '<html><body><div id="js_content">'
    f"<p>{LONG_TEXT}</p>"
    f'<img data-src="{IMG_OK}" style="visibility: hidden;">'
    "</div></body></html>"
)


class FakeSite:
    """文章页与图片 CDN 的替身, 记录每个地址的请求次数"""

    def __init__(self, pages: Dict[str, str], images: Dict[str, bytes]):
        self.pages = pages
        self.images = images
        self.hits: Dict[str, int] = {}
        self.gateway_targets: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "gw.example.com":
            self.gateway_targets.append(request.url.params["url"])
            assert request.url.params["authorization"] == "tok"
            url = request.url.params["url"]
        else:
            url = str(request.url)
        self.hits[url] = self.hits.get(url, 0) + 1
        if url in self.pages:
            return httpx.Response(200, text=self.pages[url])
        if url in self.images:
            return httpx.Response(200, content=self.images[url])
        return httpx.Response(404, text="not found")


class FakeRenderer(BaseRenderer):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[dict] = []

    @property
    def name(self) -> str:
        return "fake"

    async def render(self, body_html, output_path, title, working_dir=None) -> Path:
        self.calls.append({"html": body_html, "title": title, "working_dir": working_dir})
        if self.fail:
            raise RenderError("renderer exploded")
        output_path = Path(output_path)
        output_path.write_bytes(b"%PDF-1.4 fake")
        return output_path


def _article(task_id: str, idx: int, title: str, url: str, similarity: float) -> InsightArticle:
    return InsightArticle(
        id=f"{task_id}-{idx}",
        task_id=task_id,
        title=title,
        url=url,
        account_name="Account",
        account_fakeid="fake-1",
        publish_time=1700000000,
        similarity=similarity,
        insight=f"insight {idx}",
        relevance_score=0.8,
        created_at=int(time.time()),
    )


@pytest.fixture
def site():
    return FakeSite(
        pages={
            "https://mp.weixin.qq.com/s/long": LONG_PAGE,
            "https://mp.weixin.qq.com/s/short": "<html>tiny</html>",
        },
        images={IMG_OK: PNG_BYTES},
    )


@pytest_asyncio.fixture
async def client(site):
    async with build_http_client(transport=httpx.MockTransport(site)) as http_client:
        yield http_client


@pytest.fixture
def images(client, db, gate):
    return ImagePipeline(client, AssetCache(db), gate=gate)


@pytest.fixture
def seeded(db):
    db.create_task("t1", "supply chain risk", 30)
    db.set_task_keywords("t1", ["供应链"])
    db.insert_article(_article("t1", 1, "供应链 长文", "https://mp.weixin.qq.com/s/long", 0.9))
    db.insert_article(_article("t1", 2, "短文", "https://mp.weixin.qq.com/s/short", 0.8))
    db.insert_article(_article("t1", 3, "失效链接", "https://mp.weixin.qq.com/s/gone", 0.7))
    return "t1"


class TestImagePipeline:
    """图片发现 / 缓存 / 改写"""

    @pytest.mark.asyncio
    async def test_relative_rewrite_and_cache(self, images, db, tmp_path, site):
        result = await images.process(LONG_PAGE, tmp_path / "images")

        assert result.found == 1
        assert len(result.files) == 1
        assert result.files[0].suffix == ".png"
        assert result.files[0].read_bytes() == PNG_BYTES
        assert f'src="images/{result.files[0].name}"' in result.html
        assert "visibility" not in result.html
        assert "data-src" not in result.html
        assert AssetCache(db).get(IMG_OK) is not None

        again = await images.process(LONG_PAGE, tmp_path / "images2")
        assert again.found == 1
        assert site.hits[IMG_OK] == 1

    @pytest.mark.asyncio
    async def test_embed_mode_uses_data_uri(self, images, tmp_path):
        result = await images.process(LONG_PAGE, tmp_path / "images", embed=True)
        assert 'src="data:image/png;base64,' in result.html

    @pytest.mark.asyncio
    async def test_corrupt_cache_entry_is_refetched(self, images, db, tmp_path, site):
        AssetCache(db).set(IMG_OK, b"<html>blocked</html>" * 10, "image/jpeg")

        result = await images.process(LONG_PAGE, tmp_path / "images")

        assert site.hits[IMG_OK] == 1
        assert result.files[0].read_bytes() == PNG_BYTES
        assert AssetCache(db).get(IMG_OK).mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_failed_download_keeps_original_reference(self, images, tmp_path, site, sleeper):
        html = f'<p><img src="{IMG_BROKEN}"></p>'

        result = await images.process(html, tmp_path / "images")

        assert result.files == []
        assert IMG_BROKEN in result.html
        assert site.hits[IMG_BROKEN] == 3
        assert sleeper.calls == [pytest.approx(0.5), pytest.approx(0.5)]

    @pytest.mark.asyncio
    async def test_gateway_url(self, images, tmp_path, site):
        result = await images.process(
            LONG_PAGE, tmp_path / "images", gateway="https://gw.example.com", authorization="tok"
        )

        assert len(result.files) == 1
        assert site.gateway_targets == [IMG_OK]

    @pytest.mark.asyncio
    async def test_overlapping_urls_rewrite_independently(self, images, tmp_path, site):
        short = "https://mmbiz.qpic.cn/x/640"
        longer = "https://mmbiz.qpic.cn/x/640?wx_fmt=png"
        site.images[short] = PNG_BYTES
        site.images[longer] = PNG_BYTES
        html = f'<img src="{short}"><img src="{longer}">'

        result = await images.process(html, tmp_path / "images")

        refs = re.findall(r'src="([^"]+)"', result.html)
        assert len(result.files) == 2
        assert len(refs) == 2
        assert refs[0] != refs[1]
        assert refs[0].startswith("images/") and refs[0].endswith(".jpg")
        assert refs[1].startswith("images/") and refs[1].endswith(".png")
        assert sorted(f"images/{f.name}" for f in result.files) == sorted(refs)

    @pytest.mark.asyncio
    async def test_all_spellings_of_one_url_are_rewritten(self, images, tmp_path, site):
        html = (
            '<img src="//mmbiz.qpic.cn/pic1?wx_fmt=png">'
            f'<img src="{IMG_OK}">'
        )

        result = await images.process(html, tmp_path / "images")

        refs = re.findall(r'src="([^"]+)"', result.html)
        assert result.found == 1
        assert len(result.files) == 1
        assert refs == [f"images/{result.files[0].name}"] * 2
        assert "https:images" not in result.html
        assert site.hits[IMG_OK] == 1

    def test_find_image_urls(self):
        html = '<img data-src="//mmbiz.qpic.cn/a?wx_fmt=png&amp;x=1"><img src="https://example.com/b.jpg">'
        assert find_image_urls(html) == [
            "https://mmbiz.qpic.cn/a?wx_fmt=png&x=1",
            "https://example.com/b.jpg",
        ]

    def test_find_image_urls_dedupes(self):
        html = f'<img src="{IMG_OK}"><p>again</p><img data-src="{IMG_OK}"><img src="{IMG_BROKEN}">'
        assert find_image_urls(html) == [IMG_OK, IMG_BROKEN]


class TestBulkExporter:
    @pytest.mark.asyncio
    async def test_unknown_task(self, db, client, images, gate, tmp_path):
        exporter = BulkExporter(db, client, images, renderer=FakeRenderer(), gate=gate)
        with pytest.raises(TaskNotFoundError):
            await exporter.export("missing", tmp_path)

    @pytest.mark.asyncio
    async def test_empty_task_creates_nothing(self, db, client, images, gate, tmp_path):
        db.create_task("empty", "prompt", 30)
        exporter = BulkExporter(db, client, images, renderer=FakeRenderer(), gate=gate)

        result = await exporter.export("empty", tmp_path / "out")

        assert result.success is False
        assert result.message == "No articles to export"
        assert not (tmp_path / "out").exists()

    @pytest.mark.asyncio
    async def test_markdown_export(self, db, client, images, gate, tmp_path, seeded, site):
        exporter = BulkExporter(db, client, images, renderer=FakeRenderer(), gate=gate)

        result = await exporter.export(seeded, tmp_path, ExportFormat.MARKDOWN)

        assert result.success is True
        export_dir = Path(result.export_dir)
        assert export_dir.parent == tmp_path
        assert export_dir.name.startswith("supply chain risk_export_")
        assert result.message == f"Export completed to {export_dir}"

        markdown = (export_dir / "1_供应链 长文.md").read_text("utf-8")
        assert markdown.startswith("---\ntitle: 供应链 长文\nurl: https://mp.weixin.qq.com/s/long\n")
        assert "# 供应链 长文" in markdown
        assert "> Insight: insight 1" in markdown
        assert len(list((export_dir / "images").iterdir())) == 1

        summary = (export_dir / "summary.txt").read_text("utf-8")
        assert summary.startswith(
            "Task Prompt: supply chain risk\nTarget: 30\nProcessed: 0\nKeywords: [\"供应链\"]\n\n"
        )
        first = summary.index("1. 供应链 长文 (https://mp.weixin.qq.com/s/long)")
        second = summary.index("2. 短文 (https://mp.weixin.qq.com/s/short)")
        third = summary.index("3. 失效链接 (https://mp.weixin.qq.com/s/gone)")
        assert first < second < third
        assert "   Insight: insight 1\n   [Success] Markdown saved.\n" in summary
        assert "   [Error] Download failed: Content too short\n" in summary
        assert "   [Error] Download failed: Status: 404\n" in summary

        assert site.hits["https://mp.weixin.qq.com/s/gone"] == 3
        assert PageCache(db).get("https://mp.weixin.qq.com/s/long") == LONG_PAGE
        assert PageCache(db).get("https://mp.weixin.qq.com/s/short") is None

    @pytest.mark.asyncio
    async def test_second_export_uses_page_cache(self, db, client, images, gate, tmp_path, seeded, site):
        exporter = BulkExporter(db, client, images, renderer=FakeRenderer(), gate=gate)
        await exporter.export(seeded, tmp_path / "first")

        result = await exporter.export(seeded, tmp_path / "second")

        summary = (Path(result.export_dir) / "summary.txt").read_text("utf-8")
        assert "   [Cache] Hit\n" in summary
        assert site.hits["https://mp.weixin.qq.com/s/long"] == 1

    @pytest.mark.asyncio
    async def test_pdf_export(self, db, client, images, gate, tmp_path, seeded):
        renderer = FakeRenderer()
        exporter = BulkExporter(db, client, images, renderer=renderer, gate=gate)

        result = await exporter.export(seeded, tmp_path, "pdf")

        export_dir = Path(result.export_dir)
        assert (export_dir / "1_供应链 长文.pdf").read_bytes().startswith(b"%PDF")
        assert len(renderer.calls) == 1
        assert renderer.calls[0]["title"] == "供应链 长文"
        assert renderer.calls[0]["working_dir"] == export_dir
        assert "images/" in renderer.calls[0]["html"]
        summary = (export_dir / "summary.txt").read_text("utf-8")
        assert "   [Success] PDF generated.\n" in summary

    @pytest.mark.asyncio
    async def test_pdf_failure_is_logged_per_article(self, db, client, images, gate, tmp_path, seeded):
        exporter = BulkExporter(db, client, images, renderer=FakeRenderer(fail=True), gate=gate)

        result = await exporter.export(seeded, tmp_path, ExportFormat.PDF)

        assert result.success is True
        summary = (Path(result.export_dir) / "summary.txt").read_text("utf-8")
        assert "   [Error] PDF gen failed: renderer exploded\n" in summary

    @pytest.mark.asyncio
    async def test_jitter_between_articles(self, db, client, images, gate, sleeper, tmp_path, seeded):
        exporter = BulkExporter(db, client, images, renderer=FakeRenderer(), gate=gate)
        await exporter.export(seeded, tmp_path)

        # two jitter pauses plus two 1s retry pauses for the dead link
        assert len(sleeper.calls) == 4
        assert all(0.1 <= s <= 1.0 for s in sleeper.calls)


class TestPrefetcher:
    @pytest.mark.asyncio
    async def test_counts_and_caches(self, db, client, images, gate, seeded, site):
        site.pages["https://mp.weixin.qq.com/s/long"] = LONG_PAGE.replace(
            "</div>", f'<img src="{IMG_BROKEN}"></div>'
        )
        prefetcher = Prefetcher(db, client, images, gate=gate)

        result = await prefetcher.prefetch(seeded)

        assert result.success is True
        assert result.message == "Prefetch completed."
        assert result.stats.article_success == 2
        assert result.stats.article_failed == 1
        assert result.stats.image_success == 1
        assert result.stats.image_failed == 1
        assert site.hits[IMG_BROKEN] == 1
        assert PageCache(db).get("https://mp.weixin.qq.com/s/short") == "<html>tiny</html>"
        assert AssetCache(db).get(IMG_OK) is not None

    @pytest.mark.asyncio
    async def test_repeated_image_counted_once(self, db, client, images, gate, seeded, site):
        site.pages["https://mp.weixin.qq.com/s/long"] = LONG_PAGE.replace(
            "</div>", f'<img src="{IMG_OK}"></div>'
        )

        result = await Prefetcher(db, client, images, gate=gate).prefetch(seeded)

        assert result.stats.image_success == 1
        assert result.stats.image_failed == 0
        assert site.hits[IMG_OK] == 1

    @pytest.mark.asyncio
    async def test_short_cached_page_is_refetched(self, db, client, images, gate, seeded, site):
        prefetcher = Prefetcher(db, client, images, gate=gate)
        await prefetcher.prefetch(seeded)
        await prefetcher.prefetch(seeded)

        assert site.hits["https://mp.weixin.qq.com/s/long"] == 1
        assert site.hits["https://mp.weixin.qq.com/s/short"] == 2
        assert site.hits[IMG_OK] == 1

    @pytest.mark.asyncio
    async def test_unknown_task(self, db, client, images, gate):
        with pytest.raises(TaskNotFoundError):
            await Prefetcher(db, client, images, gate=gate).prefetch("missing")


class TestSinglePdf:
    @pytest.mark.asyncio
    async def test_renders_and_cleans_up(self, images):
        renderer = FakeRenderer()

        data = await render_single_pdf(LONG_PAGE, images, renderer, filename="report")

        assert data == b"%PDF-1.4 fake"
        call = renderer.calls[0]
        assert call["title"] == "report"
        assert "data:image/png;base64," in call["html"]
        assert not Path(call["working_dir"]).exists()

    @pytest.mark.asyncio
    async def test_renderer_failure_still_cleans_up(self, images):
        renderer = FakeRenderer(fail=True)

        with pytest.raises(RenderError):
            await render_single_pdf(LONG_PAGE, images, renderer)
        assert not Path(renderer.calls[0]["working_dir"]).exists()

    @pytest.mark.asyncio
    async def test_missing_html(self, images):
        with pytest.raises(RenderError):
            await render_single_pdf("", images, FakeRenderer())
