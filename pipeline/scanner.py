"""
Scan-and-Filter Engine
逐账号拉取文章 -> 向量相似度初筛 -> LLM 相关性复核 -> 落库
"""
from dataclasses import dataclass
from typing import List, Optional, Set
import logging
import time
import uuid

import numpy as np

from models import AccountCandidate, InsightArticle, SourceArticle, UpstreamSession
from processing.embedder import cosine_similarity
from storage import InsightDatabase
from utils.exceptions import EmbeddingError
from .cancellation import CancellationToken, SCAN_CANCEL_REASON
from .rate_gate import RateGate
from .retry import RetryExhausted, retry_async
from .scaling import ScalingPolicy, scan_ceiling


logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.4
RELEVANCE_SCORE = 0.8
ACCOUNT_DELAY_MS = (2000, 5000)
FETCH_ATTEMPTS = 3
CLASSIFY_ATTEMPTS = 3
BACKOFF_STEP_MS = 2000
CANCEL_POLL_EVERY = 5


@dataclass
class ScanOutcome:
    article_count: int
    scanned_count: int
    target_count: int
    max_scan: int

    @property
    def completion_reason(self) -> str:
        if self.article_count >= self.target_count:
            return f"Target Reached ({self.article_count}/{self.target_count})"
        if self.scanned_count >= self.max_scan:
            return f"Max Scan Limit Reached ({self.scanned_count})"
        return "All Keywords Searched"


class ScanAndFilterEngine:
    """
    扫描与筛选

    Args:
        db: 存储
        upstream: 提供 list_articles(account_id, limit, credential)
        embedder: 提供 embed(text) -> np.ndarray
        judge: 提供 classify_and_summarize(intent, title, digest) -> (bool, str)
        gate: 节流器 (也提供重试等待)
    """

    def __init__(self, db: InsightDatabase, upstream, embedder, judge, gate: Optional[RateGate] = None):
        self.db = db
        self.upstream = upstream
        self.embedder = embedder
        self.judge = judge
        self.gate = gate or RateGate()

    async def embed_prompt(self, prompt: str) -> np.ndarray:
        """计算任务意图向量; 失败或空向量对任务是致命的"""
        try:
            vector = await self.embedder.embed(prompt)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding generation failed: {e}") from e
        if vector is None or len(vector) == 0:
            raise EmbeddingError("Embedding generation failed: empty vector")
        return np.asarray(vector, dtype=np.float32)

    async def _fetch_articles(
        self,
        task_id: str,
        account: AccountCandidate,
        limit: int,
        credential: UpstreamSession,
    ) -> Optional[List[SourceArticle]]:
        try:
            return await retry_async(
                lambda: self.upstream.list_articles(account.external_id, limit, credential),
                attempts=FETCH_ATTEMPTS,
                step_ms=BACKOFF_STEP_MS,
                label=f"Task {task_id} fetch articles for {account.display_name}",
                sleep=self.gate.sleep,
            )
        except RetryExhausted:
            logger.error(
                f"[Scanner] Task {task_id}: failed to fetch articles for {account.display_name} "
                f"after {FETCH_ATTEMPTS} attempts. Skipping."
            )
            return None

    async def _classify(self, task_id: str, prompt: str, article: SourceArticle):
        try:
            return await retry_async(
                lambda: self.judge.classify_and_summarize(prompt, article.title, article.digest),
                attempts=CLASSIFY_ATTEMPTS,
                step_ms=BACKOFF_STEP_MS,
                label=f"Task {task_id} insight for '{article.title}'",
                sleep=self.gate.sleep,
            )
        except RetryExhausted:
            logger.error(
                f"[Scanner] Task {task_id}: failed to generate insight for '{article.title}' "
                f"after {CLASSIFY_ATTEMPTS} attempts. Skipping."
            )
            return None

    async def run(
        self,
        task_id: str,
        prompt: str,
        target_count: int,
        accounts: List[AccountCandidate],
        policy: ScalingPolicy,
        credential: UpstreamSession,
        token: CancellationToken,
        prompt_vector: Optional[np.ndarray] = None,
    ) -> ScanOutcome:
        """
        扫描账号列表直到达到目标数 / 扫描上限 / 账号耗尽

        Raises:
            TaskCancelled: 轮询点发现取消 (已落库的文章保留)
            EmbeddingError: 意图向量计算失败
        """
        if prompt_vector is None:
            prompt_vector = await self.embed_prompt(prompt)

        max_scan = scan_ceiling(target_count)
        seen_urls: Set[str] = set()
        article_count = 0
        scanned_count = 0

        for account in accounts:
            if article_count >= target_count or scanned_count >= max_scan:
                break
            await token.raise_if_cancelled(SCAN_CANCEL_REASON)

            delay = self.gate.pick_ms(*ACCOUNT_DELAY_MS)
            logger.info(f"[Scanner] Task {task_id}: waiting {delay}ms before fetching '{account.display_name}'")
            await self.gate.pause(delay)

            articles = await self._fetch_articles(task_id, account, policy.article_limit, credential)
            if articles is None:
                continue
            logger.info(f"[Scanner] Task {task_id}: fetched {len(articles)} articles from {account.display_name}")

            for article in articles:
                if article_count >= target_count:
                    break
                if article.url in seen_urls:
                    continue
                if scanned_count % CANCEL_POLL_EVERY == 0:
                    await token.raise_if_cancelled(SCAN_CANCEL_REASON)

                seen_urls.add(article.url)
                scanned_count += 1

                try:
                    vector = await self.embedder.embed(article.embedding_text)
                except Exception as e:
                    logger.warning(f"[Scanner] Task {task_id}: failed to embed '{article.title}': {e}")
                    continue

                similarity = cosine_similarity(prompt_vector, vector)
                logger.info(f"[Scanner] Task {task_id}: '{article.title}' similarity {similarity:.4f}")
                if similarity <= SIMILARITY_THRESHOLD:
                    continue

                verdict = await self._classify(task_id, prompt, article)
                if verdict is None:
                    continue
                is_relevant, insight = verdict
                if not is_relevant:
                    logger.info(f"[Scanner] Task {task_id}: '{article.title}' filtered as irrelevant")
                    continue

                await self.db.ainsert_article(InsightArticle(
                    id=str(uuid.uuid4()),
                    task_id=task_id,
                    title=article.title,
                    url=article.url,
                    account_name=account.display_name,
                    account_fakeid=account.external_id,
                    publish_time=article.create_time,
                    similarity=similarity,
                    insight=insight,
                    relevance_score=RELEVANCE_SCORE,
                    created_at=int(time.time()),
                ))
                article_count += 1
                await self.db.aset_processed_count(task_id, article_count)

        outcome = ScanOutcome(
            article_count=article_count,
            scanned_count=scanned_count,
            target_count=target_count,
            max_scan=max_scan,
        )
        logger.info(
            f"[Scanner] Task {task_id} finished: {article_count} articles (scanned {scanned_count})"
        )
        return outcome
