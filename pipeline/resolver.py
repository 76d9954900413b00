"""
Search-Space Resolver
确定任务要扫描的账号集合: 指定账号 (pinned) 或关键词发现 (discovery)
"""
from typing import List, Optional
import logging

from models import AccountCandidate, SearchSpeed, UpstreamSession
from storage import InsightDatabase
from .cancellation import CancellationToken, RESOLVER_CANCEL_REASON
from .rate_gate import RateGate
from .scaling import ScalingPolicy


logger = logging.getLogger(__name__)


class SearchSpaceResolver:
    """
    账号集合解析

    Args:
        db: 任务存储 (写入生成的关键词)
        upstream: 提供 search_accounts(query, limit, credential) 的上游客户端
        keyword_agent: 提供 suggest_keywords(topic, count) 的关键词能力
        gate: 节流器
    """

    def __init__(self, db: InsightDatabase, upstream, keyword_agent, gate: Optional[RateGate] = None):
        self.db = db
        self.upstream = upstream
        self.keyword_agent = keyword_agent
        self.gate = gate or RateGate()

    async def resolve(
        self,
        task_id: str,
        prompt: str,
        policy: ScalingPolicy,
        speed: SearchSpeed,
        credential: UpstreamSession,
        token: CancellationToken,
        pinned: Optional[AccountCandidate] = None,
    ) -> List[AccountCandidate]:
        """
        Returns:
            去重后的账号列表 (保持发现顺序)

        Raises:
            TaskCancelled: 在任一轮询点发现取消
            关键词生成失败的异常原样抛出 (对任务是致命的)
        """
        if pinned is not None:
            await token.raise_if_cancelled(RESOLVER_CANCEL_REASON)
            logger.info(f"[Resolver] Task {task_id}: targeting account {pinned.display_name} ({pinned.external_id})")
            return [pinned]

        await token.raise_if_cancelled(RESOLVER_CANCEL_REASON)

        keywords = await self.keyword_agent.suggest_keywords(prompt, policy.keyword_count)
        logger.info(f"[Resolver] Task {task_id}: generated keywords {keywords}")
        await self.db.aset_task_keywords(task_id, keywords)

        discovered: List[AccountCandidate] = []
        seen_ids = set()

        for keyword in keywords:
            await token.raise_if_cancelled(RESOLVER_CANCEL_REASON)

            delay = self.gate.pick_ms(*speed.delay_range_ms)
            logger.info(
                f"[Resolver] Task {task_id}: waiting {delay}ms before searching '{keyword}' (speed: {speed.value})"
            )
            await self.gate.pause(delay)

            await token.raise_if_cancelled(RESOLVER_CANCEL_REASON)

            try:
                accounts = await self.upstream.search_accounts(keyword, policy.account_limit, credential)
            except Exception as e:
                logger.error(f"[Resolver] Task {task_id}: search failed for keyword '{keyword}': {e}")
                continue

            for account in accounts:
                if account.external_id in seen_ids:
                    continue
                seen_ids.add(account.external_id)
                discovered.append(account)

        logger.info(f"[Resolver] Task {task_id}: {len(discovered)} unique accounts discovered")
        return discovered
