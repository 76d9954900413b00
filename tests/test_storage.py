"""
Tests for the SQLite store and caches
"""
import threading
import time

import pytest

from models import InsightArticle, TaskStatus, UpstreamSession
from storage import AssetCache, PageCache
from utils.exceptions import StorageError


def _article(task_id: str, idx: int, similarity=None) -> InsightArticle:
    return InsightArticle(
        id=f"{task_id}-a{idx}",
        task_id=task_id,
        title=f"Article {idx}",
        url=f"https://mp.weixin.qq.com/s/{task_id}-{idx}",
        account_name="Account",
        account_fakeid="fake-1",
        publish_time=1700000000,
        similarity=similarity,
        insight="insight",
        relevance_score=0.8,
        created_at=int(time.time()),
    )


class TestTasks:
    """任务表"""

    def test_create_defaults(self, db):
        task = db.create_task("t1", "supply chain risk", 30)
        assert task.status == TaskStatus.PENDING
        assert task.keywords == []
        assert task.processed_count == 0
        assert task.completion_reason is None

    def test_list_newest_first(self, db):
        db.create_task("t1", "first", 10)
        db.create_task("t2", "second", 10)
        db.create_task("t3", "third", 10)
        assert [task.id for task in db.list_tasks()] == ["t3", "t2", "t1"]

    def test_status_keywords_and_count(self, db):
        db.create_task("t1", "prompt", 30)
        db.set_task_keywords("t1", ["供应链", "风险"])
        db.set_processed_count("t1", 4)
        db.set_task_status("t1", TaskStatus.COMPLETED, "Target Reached (4/4)")

        task = db.get_task("t1")
        assert task.keywords == ["供应链", "风险"]
        assert task.processed_count == 4
        assert task.status == TaskStatus.COMPLETED
        assert task.completion_reason == "Target Reached (4/4)"

    def test_sweep_fails_interrupted_tasks(self, db):
        for task_id, status in [
            ("p", TaskStatus.PROCESSING),
            ("c", TaskStatus.CANCELLING),
            ("done", TaskStatus.COMPLETED),
            ("new", TaskStatus.PENDING),
        ]:
            db.create_task(task_id, "prompt", 30)
            db.set_task_status(task_id, status)

        assert db.sweep_stuck_tasks() == 2
        assert db.get_task_status("p") == TaskStatus.FAILED
        assert db.get_task_status("c") == TaskStatus.FAILED
        assert db.get_task_status("done") == TaskStatus.COMPLETED
        assert db.get_task_status("new") == TaskStatus.PENDING

    def test_delete_removes_articles(self, db):
        db.create_task("t1", "prompt", 30)
        db.insert_article(_article("t1", 1, 0.9))
        assert db.delete_task("t1") is True
        assert db.get_task("t1") is None
        assert db.count_articles("t1") == 0
        assert db.delete_task("t1") is False

    def test_terminal_status_is_never_overwritten(self, db):
        db.create_task("t1", "prompt", 30)
        assert db.set_task_status("t1", TaskStatus.CANCELLING) is True
        assert db.set_task_status("t1", TaskStatus.COMPLETED, "Target Reached (30/30)") is True

        assert db.set_task_status("t1", TaskStatus.CANCELLING) is False
        assert db.set_task_status("t1", TaskStatus.CANCELLED, "Cancelled by user") is False
        assert db.set_task_status("missing", TaskStatus.PROCESSING) is False

        task = db.get_task("t1")
        assert task.status == TaskStatus.COMPLETED
        assert task.completion_reason == "Target Reached (30/30)"

    def test_delete_while_articles_arrive(self, db):
        db.create_task("t1", "prompt", 30)
        stop = threading.Event()

        def writer():
            idx = 0
            while not stop.is_set():
                idx += 1
                try:
                    db.insert_article(_article("t1", idx, 0.5))
                except StorageError:
                    return

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            deadline = time.time() + 5
            while db.count_articles("t1") < 3 and time.time() < deadline:
                time.sleep(0.001)
            assert db.delete_task("t1") is True
        finally:
            stop.set()
            thread.join(timeout=5)

        assert db.get_task("t1") is None
        assert db.count_articles("t1") == 0


class TestArticles:
    def test_similarity_desc_nulls_last(self, db):
        db.create_task("t1", "prompt", 30)
        db.insert_article(_article("t1", 1, 0.5))
        db.insert_article(_article("t1", 2, None))
        db.insert_article(_article("t1", 3, 0.9))

        ordered = db.list_articles("t1")
        assert [a.similarity for a in ordered] == [0.9, 0.5, None]

    @pytest.mark.asyncio
    async def test_async_facade(self, db):
        await db.acreate_task("t1", "prompt", 30)
        await db.ainsert_article(_article("t1", 1, 0.7))
        await db.aset_processed_count("t1", 1)

        articles = await db.alist_articles("t1")
        task = await db.aget_task("t1")
        assert len(articles) == 1
        assert task.processed_count == 1


class TestSessions:
    def test_latest_valid_session_wins(self, db):
        now = int(time.time())
        db.save_session(UpstreamSession(auth_key="old", token="1", cookie="c1", created_at=now - 10, expires_at=now + 100))
        db.save_session(UpstreamSession(auth_key="new", token="2", cookie="c2", created_at=now, expires_at=now + 100))
        db.save_session(UpstreamSession(auth_key="gone", token="3", cookie="c3", created_at=now + 5, expires_at=now - 1))

        session = db.get_valid_session()
        assert session is not None
        assert session.auth_key == "new"

    def test_cleanup_expired(self, db):
        now = int(time.time())
        db.save_session(UpstreamSession(auth_key="gone", token="3", cookie="c3", created_at=now - 100, expires_at=now - 1))
        assert db.cleanup_expired_sessions() == 1
        assert db.get_valid_session() is None


class TestCaches:
    """页面与图片缓存"""

    def test_page_cache_roundtrip_and_miss(self, db):
        pages = PageCache(db)
        assert pages.get("https://mp.weixin.qq.com/s/x") is None
        pages.set("https://mp.weixin.qq.com/s/x", "<html>body</html>")
        pages.set("https://mp.weixin.qq.com/s/x", "<html>newer</html>")
        assert pages.get("https://mp.weixin.qq.com/s/x") == "<html>newer</html>"

    def test_corrupt_asset_is_a_miss(self, db):
        assets = AssetCache(db)
        assets.set("https://mmbiz.qpic.cn/bad", b"<html>blocked</html>" * 10, "image/jpeg")
        assets.set("https://mmbiz.qpic.cn/tiny", b"\x89PNG" + b"0" * 10, "image/png")
        assets.set("https://mmbiz.qpic.cn/good", b"\x89PNG" + b"0" * 200, "image/png")

        assert assets.get("https://mmbiz.qpic.cn/bad") is None
        assert assets.get("https://mmbiz.qpic.cn/tiny") is None
        good = assets.get("https://mmbiz.qpic.cn/good")
        assert good is not None
        assert good.mime_type == "image/png"
        assert good.size == 204
