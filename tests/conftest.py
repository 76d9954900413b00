"""
Shared fixtures and fakes for the insight task tests
"""
from pathlib import Path
from typing import Dict, List, Optional
import asyncio
import random
import sys
import time

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from models import AccountCandidate, SourceArticle, UpstreamSession
from pipeline.rate_gate import RateGate
from storage import InsightDatabase
from utils.exceptions import AuthError, UpstreamError


class SleepRecorder:
    """不真正等待, 只记录等待时长 (秒)"""

    def __init__(self):
        self.calls: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeUpstream:
    """上游平台替身: 关键词 -> 账号, 账号 -> 文章"""

    def __init__(
        self,
        accounts: Optional[Dict[str, List[AccountCandidate]]] = None,
        articles: Optional[Dict[str, List[SourceArticle]]] = None,
        failing_keywords: Optional[set] = None,
        failing_accounts: Optional[set] = None,
        probe_ok: bool = True,
    ):
        self.accounts = accounts or {}
        self.articles = articles or {}
        self.failing_keywords = failing_keywords or set()
        self.failing_accounts = failing_accounts or set()
        self.probe_ok = probe_ok
        self.searches: List[str] = []
        self.fetches: List[str] = []

    async def probe(self, credential: UpstreamSession) -> None:
        if not self.probe_ok:
            raise AuthError("Session invalid (200003): invalid session")

    async def search_accounts(self, query: str, limit: int, credential: UpstreamSession) -> List[AccountCandidate]:
        self.searches.append(query)
        if query in self.failing_keywords:
            raise UpstreamError(f"Search Error (-1): {query}", source="fake", ret=-1)
        return list(self.accounts.get(query, []))[:limit]

    async def list_articles(self, account_id: str, limit: int, credential: UpstreamSession) -> List[SourceArticle]:
        self.fetches.append(account_id)
        if account_id in self.failing_accounts:
            raise UpstreamError("connection reset", source="fake")
        return list(self.articles.get(account_id, []))


class FakeKeywordAgent:
    def __init__(self, keywords: List[str], error: Optional[Exception] = None, hold: Optional[asyncio.Event] = None):
        self.keywords = keywords
        self.error = error
        self.hold = hold
        self.calls = 0
        self.counts: List[int] = []

    async def suggest_keywords(self, topic: str, count: int) -> List[str]:
        self.calls += 1
        self.counts.append(count)
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error
        return list(self.keywords)[:count]


class FakeJudge:
    """标题含 'Ad' 的判为无关, 其余相关"""

    def __init__(self):
        self.calls: List[str] = []

    async def classify_and_summarize(self, intent: str, title: str, digest: str):
        self.calls.append(title)
        if "Ad" in title.split():
            return False, "advertisement"
        return True, f"Insight for {title}"


class FakeEmbedder:
    """含 'supply' 的文本贴近意图向量, 其余正交"""

    def __init__(self, fail_on: Optional[set] = None, empty: bool = False):
        self.fail_on = fail_on or set()
        self.empty = empty
        self.calls = 0

    async def embed(self, text: str) -> np.ndarray:
        self.calls += 1
        if self.empty:
            return np.asarray([], dtype=np.float32)
        if text in self.fail_on:
            raise RuntimeError("embedding backend unavailable")
        if "supply" in text.lower():
            return np.asarray([1.0, 0.1], dtype=np.float32)
        return np.asarray([0.0, 1.0], dtype=np.float32)


def make_articles(prefix: str, count: int, relevant: bool = True) -> List[SourceArticle]:
    topic = "Supply chain" if relevant else "Celebrity gossip"
    return [
        SourceArticle(
            title=f"{topic} {prefix} #{i}",
            digest=f"{topic} digest {i}",
            url=f"https://mp.weixin.qq.com/s/{prefix}-{i}",
            create_time=1700000000 + i,
        )
        for i in range(count)
    ]


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def gate(sleeper) -> RateGate:
    return RateGate(sleep=sleeper.sleep, rng=random.Random(7))


@pytest.fixture
def db(tmp_path):
    database = InsightDatabase(tmp_path / "insight.db")
    yield database
    database.close()


@pytest.fixture
def credential(db) -> UpstreamSession:
    now = int(time.time())
    session = UpstreamSession(
        auth_key="auth-1",
        token="123456",
        cookie="slave_sid=abc; data_ticket=xyz",
        created_at=now,
        expires_at=now + 3600,
    )
    db.save_session(session)
    return session
