"""
Insight Database
SQLite 持久化: 任务 / 文章 / 登录凭证 / 页面与图片缓存

每次写入都是一条自动提交的语句; 连接在线程池中共享, 用锁串行化。
异步调用方使用 a* 方法 (asyncio.to_thread)。
"""
from pathlib import Path
from typing import Any, Dict, List, Optional
import asyncio
import json
import logging
import sqlite3
import threading
import time

from models import InsightArticle, InsightTask, TaskStatus, UpstreamSession
from utils.exceptions import StorageError


logger = logging.getLogger(__name__)


def _now_ts() -> int:
    return int(time.time())


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS insight_tasks (
      id TEXT PRIMARY KEY,
      prompt TEXT NOT NULL,
      status TEXT NOT NULL,
      keywords TEXT NOT NULL DEFAULT '[]',
      target_count INTEGER NOT NULL DEFAULT 30,
      processed_count INTEGER NOT NULL DEFAULT 0,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL,
      completion_reason TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS insight_articles (
      id TEXT PRIMARY KEY,
      task_id TEXT NOT NULL REFERENCES insight_tasks(id),
      title TEXT NOT NULL,
      url TEXT NOT NULL,
      account_name TEXT,
      account_fakeid TEXT,
      publish_time INTEGER,
      similarity REAL,
      insight TEXT,
      relevance_score REAL,
      created_at INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_insight_articles_task ON insight_articles(task_id);",
    """
    CREATE TABLE IF NOT EXISTS cached_pages (
      key TEXT PRIMARY KEY,
      url TEXT NOT NULL,
      html TEXT NOT NULL,
      fetched_at INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS assets (
      url TEXT PRIMARY KEY,
      data BLOB NOT NULL,
      mime_type TEXT NOT NULL,
      size INTEGER NOT NULL,
      fetched_at INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS upstream_sessions (
      auth_key TEXT PRIMARY KEY,
      token TEXT NOT NULL,
      cookie TEXT NOT NULL,
      created_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL
    );
    """,
)


class InsightDatabase:
    """
    SQLite 存储

    Example:
        db = InsightDatabase(Path("./data/insight.db"))
        task = db.create_task("t1", "supply chain risk", 30)
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        if str(path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(path),
            timeout=30,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "InsightDatabase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_schema(self) -> None:
        for statement in _SCHEMA:
            self._conn.execute(statement)

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return self._conn.execute(sql, params)
            except sqlite3.Error as e:
                raise StorageError(f"SQLite error: {e}", {"sql": sql.strip().split()[0]}) from e

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"SQLite error: {e}") from e

    def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"SQLite error: {e}") from e

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> InsightTask:
        try:
            keywords = json.loads(row["keywords"] or "[]")
        except (TypeError, ValueError):
            keywords = []
        return InsightTask(
            id=row["id"],
            prompt=row["prompt"],
            status=TaskStatus(row["status"]),
            keywords=[str(k) for k in keywords],
            target_count=int(row["target_count"]),
            processed_count=int(row["processed_count"]),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
            completion_reason=row["completion_reason"],
        )

    def create_task(self, task_id: str, prompt: str, target_count: int) -> InsightTask:
        now = _now_ts()
        self._execute(
            """
            INSERT INTO insight_tasks(id, prompt, status, keywords, target_count, processed_count, created_at, updated_at)
            VALUES(?, ?, ?, '[]', ?, 0, ?, ?)
            """,
            (task_id, prompt, TaskStatus.PENDING.value, int(target_count), now, now),
        )
        return self.get_task(task_id)

    def get_task(self, task_id: str) -> Optional[InsightTask]:
        row = self._fetchone("SELECT * FROM insight_tasks WHERE id = ?", (task_id,))
        return self._row_to_task(row) if row else None

    def get_task_status(self, task_id: str) -> Optional[TaskStatus]:
        row = self._fetchone("SELECT status FROM insight_tasks WHERE id = ?", (task_id,))
        return TaskStatus(row["status"]) if row else None

    def list_tasks(self) -> List[InsightTask]:
        rows = self._fetchall("SELECT * FROM insight_tasks ORDER BY created_at DESC, rowid DESC")
        return [self._row_to_task(row) for row in rows]

    def set_task_status(self, task_id: str, status: TaskStatus, reason: Optional[str] = None) -> bool:
        """
        更新任务状态; 已处于终态的任务不会被改写

        Returns:
            是否有行被更新 (False 表示任务不存在或已终结)
        """
        terminal = tuple(s.value for s in TaskStatus if s.is_terminal)
        placeholders = ", ".join("?" * len(terminal))
        guard = f"id = ? AND status NOT IN ({placeholders})"
        if reason is None:
            cur = self._execute(
                f"UPDATE insight_tasks SET status = ?, updated_at = ? WHERE {guard}",
                (status.value, _now_ts(), task_id) + terminal,
            )
        else:
            cur = self._execute(
                f"UPDATE insight_tasks SET status = ?, completion_reason = ?, updated_at = ? WHERE {guard}",
                (status.value, reason, _now_ts(), task_id) + terminal,
            )
        return cur.rowcount > 0

    def set_task_keywords(self, task_id: str, keywords: List[str]) -> None:
        self._execute(
            "UPDATE insight_tasks SET keywords = ?, updated_at = ? WHERE id = ?",
            (json.dumps(list(keywords), ensure_ascii=False), _now_ts(), task_id),
        )

    def set_processed_count(self, task_id: str, count: int) -> None:
        self._execute(
            "UPDATE insight_tasks SET processed_count = ?, updated_at = ? WHERE id = ?",
            (int(count), _now_ts(), task_id),
        )

    def delete_task(self, task_id: str) -> bool:
        """在同一事务内删除文章与任务行, 避免并发写入的文章挡住外键"""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    self._conn.execute("DELETE FROM insight_articles WHERE task_id = ?", (task_id,))
                    cur = self._conn.execute("DELETE FROM insight_tasks WHERE id = ?", (task_id,))
                except sqlite3.Error:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StorageError(f"SQLite error: {e}", {"sql": "DELETE"}) from e
        return cur.rowcount > 0

    def sweep_stuck_tasks(self, reason: str = "Interrupted by restart") -> int:
        """启动时把 processing / cancelling 的残留任务置为 failed"""
        cur = self._execute(
            """
            UPDATE insight_tasks SET status = ?, completion_reason = ?, updated_at = ?
            WHERE status IN (?, ?)
            """,
            (
                TaskStatus.FAILED.value,
                reason,
                _now_ts(),
                TaskStatus.PROCESSING.value,
                TaskStatus.CANCELLING.value,
            ),
        )
        if cur.rowcount:
            logger.warning(f"[DB] Marked {cur.rowcount} interrupted tasks as failed")
        return cur.rowcount

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    def insert_article(self, article: InsightArticle) -> None:
        self._execute(
            """
            INSERT INTO insight_articles(
              id, task_id, title, url, account_name, account_fakeid,
              publish_time, similarity, insight, relevance_score, created_at
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                article.id,
                article.task_id,
                article.title,
                article.url,
                article.account_name,
                article.account_fakeid,
                article.publish_time,
                article.similarity,
                article.insight,
                article.relevance_score,
                article.created_at,
            ),
        )

    def list_articles(self, task_id: str) -> List[InsightArticle]:
        rows = self._fetchall(
            """
            SELECT * FROM insight_articles WHERE task_id = ?
            ORDER BY similarity IS NULL, similarity DESC, rowid ASC
            """,
            (task_id,),
        )
        return [InsightArticle(**dict(row)) for row in rows]

    def count_articles(self, task_id: str) -> int:
        row = self._fetchone("SELECT COUNT(1) AS n FROM insight_articles WHERE task_id = ?", (task_id,))
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------
    # Upstream sessions
    # ------------------------------------------------------------------

    def save_session(self, session: UpstreamSession) -> None:
        self._execute(
            """
            INSERT INTO upstream_sessions(auth_key, token, cookie, created_at, expires_at)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(auth_key) DO UPDATE SET
              token = excluded.token,
              cookie = excluded.cookie,
              created_at = excluded.created_at,
              expires_at = excluded.expires_at
            """,
            (session.auth_key, session.token, session.cookie, session.created_at, session.expires_at),
        )

    def get_valid_session(self, now: Optional[int] = None) -> Optional[UpstreamSession]:
        row = self._fetchone(
            """
            SELECT * FROM upstream_sessions WHERE expires_at > ?
            ORDER BY created_at DESC, rowid DESC LIMIT 1
            """,
            (int(now if now is not None else _now_ts()),),
        )
        return UpstreamSession(**dict(row)) if row else None

    def cleanup_expired_sessions(self, now: Optional[int] = None) -> int:
        cur = self._execute(
            "DELETE FROM upstream_sessions WHERE expires_at <= ?",
            (int(now if now is not None else _now_ts()),),
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Page / asset cache rows
    # ------------------------------------------------------------------

    def get_page(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._fetchone("SELECT * FROM cached_pages WHERE key = ?", (key,))
        return dict(row) if row else None

    def put_page(self, key: str, url: str, html: str) -> None:
        self._execute(
            """
            INSERT INTO cached_pages(key, url, html, fetched_at) VALUES(?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              url = excluded.url, html = excluded.html, fetched_at = excluded.fetched_at
            """,
            (key, url, html, _now_ts()),
        )

    def get_asset(self, url: str) -> Optional[Dict[str, Any]]:
        row = self._fetchone("SELECT * FROM assets WHERE url = ?", (url,))
        return dict(row) if row else None

    def put_asset(self, url: str, data: bytes, mime_type: str) -> None:
        self._execute(
            """
            INSERT INTO assets(url, data, mime_type, size, fetched_at) VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
              data = excluded.data,
              mime_type = excluded.mime_type,
              size = excluded.size,
              fetched_at = excluded.fetched_at
            """,
            (url, sqlite3.Binary(data), mime_type, len(data), _now_ts()),
        )

    # ------------------------------------------------------------------
    # Async façade
    # ------------------------------------------------------------------

    async def acreate_task(self, task_id: str, prompt: str, target_count: int) -> InsightTask:
        return await asyncio.to_thread(self.create_task, task_id, prompt, target_count)

    async def aget_task(self, task_id: str) -> Optional[InsightTask]:
        return await asyncio.to_thread(self.get_task, task_id)

    async def aget_task_status(self, task_id: str) -> Optional[TaskStatus]:
        return await asyncio.to_thread(self.get_task_status, task_id)

    async def alist_tasks(self) -> List[InsightTask]:
        return await asyncio.to_thread(self.list_tasks)

    async def aset_task_status(self, task_id: str, status: TaskStatus, reason: Optional[str] = None) -> bool:
        return await asyncio.to_thread(self.set_task_status, task_id, status, reason)

    async def aset_task_keywords(self, task_id: str, keywords: List[str]) -> None:
        await asyncio.to_thread(self.set_task_keywords, task_id, keywords)

    async def aset_processed_count(self, task_id: str, count: int) -> None:
        await asyncio.to_thread(self.set_processed_count, task_id, count)

    async def adelete_task(self, task_id: str) -> bool:
        return await asyncio.to_thread(self.delete_task, task_id)

    async def ainsert_article(self, article: InsightArticle) -> None:
        await asyncio.to_thread(self.insert_article, article)

    async def alist_articles(self, task_id: str) -> List[InsightArticle]:
        return await asyncio.to_thread(self.list_articles, task_id)

    async def aget_valid_session(self) -> Optional[UpstreamSession]:
        return await asyncio.to_thread(self.get_valid_session)

    async def asave_session(self, session: UpstreamSession) -> None:
        await asyncio.to_thread(self.save_session, session)
