"""Task lifecycle service: create, supervise, cancel and delete insight tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
import asyncio
import logging
import time
import uuid

import httpx

from config import get_settings
from intelligence import KeywordAgent, RelevanceAgent, check_connection, get_llm
from intelligence.llm import BaseLLM
from models import (
    AccountCandidate,
    ExportFormat,
    ExportResult,
    InsightTask,
    PrefetchResult,
    ProviderConfig,
    ProviderKind,
    TaskDetail,
    TaskStatus,
    UpstreamSession,
)
from outputs import BulkExporter, ImagePipeline, Prefetcher, render_single_pdf
from outputs.renderers import BaseRenderer, get_renderer
from pipeline.cancellation import RESOLVER_CANCEL_REASON, SHUTDOWN_CANCEL_REASON, CancellationToken, TaskCancelled
from pipeline.rate_gate import RateGate
from pipeline.resolver import SearchSpaceResolver
from pipeline.scaling import ScalingPolicy
from pipeline.scanner import ScanAndFilterEngine
from processing import Embedder
from scrapers import MpScraper
from storage import AssetCache, InsightDatabase
from utils.exceptions import AuthError, StorageError, TaskNotFoundError
from utils.logger import diagnostic_log_path
from .registry import JobHandle, JobRegistry


logger = logging.getLogger(__name__)


@dataclass
class Capabilities:
    """Provider-backed capabilities used by one task job."""

    keyword_agent: Any
    judge: Any
    embedder: Any
    llms: List[BaseLLM] = field(default_factory=list)

    async def aclose(self) -> None:
        for llm in self.llms:
            try:
                await llm.aclose()
            except Exception as e:
                logger.debug(f"[Lifecycle] Failed to close {llm!r}: {e}")


CapabilitiesFactory = Callable[[ProviderConfig, Optional[httpx.AsyncClient], RateGate], Capabilities]


def build_capabilities(
    config: ProviderConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    gate: Optional[RateGate] = None,
) -> Capabilities:
    """Create keyword, relevance and embedding capabilities from a provider selection."""
    sleep = (gate or RateGate()).sleep
    keyword_llm = get_llm(config.keyword_provider, config, http_client)
    reasoning_llm = get_llm(config.reasoning_provider, config, http_client)
    embedding_llm = get_llm(config.embedding_provider, config, http_client)
    return Capabilities(
        keyword_agent=KeywordAgent(keyword_llm, sleep=sleep),
        judge=RelevanceAgent(reasoning_llm, sleep=sleep),
        embedder=Embedder(embedding_llm),
        llms=[keyword_llm, reasoning_llm, embedding_llm],
    )


def _now_ts() -> int:
    return int(time.time())


class TaskLifecycleManager:
    """Owns task records and the background job that fills each one."""

    def __init__(
        self,
        db: InsightDatabase,
        http_client: httpx.AsyncClient,
        *,
        upstream: Optional[Any] = None,
        capabilities_factory: Optional[CapabilitiesFactory] = None,
        gate: Optional[RateGate] = None,
        renderer: Optional[BaseRenderer] = None,
        registry: Optional[JobRegistry] = None,
    ) -> None:
        self.db = db
        self.client = http_client
        self.upstream = upstream or MpScraper(http_client)
        self.gate = gate or RateGate()
        self._capabilities_factory = capabilities_factory or build_capabilities
        self._renderer = renderer
        self._registry = registry or JobRegistry()
        self.images = ImagePipeline(http_client, AssetCache(db), self.gate)

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def renderer(self) -> BaseRenderer:
        if self._renderer is None:
            self._renderer = get_renderer()
        return self._renderer

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def startup(self) -> int:
        """Fail tasks left running by a previous process and drop expired sessions."""
        swept = await asyncio.to_thread(self.db.sweep_stuck_tasks)
        removed = await asyncio.to_thread(self.db.cleanup_expired_sessions)
        logger.info(f"[Lifecycle] Startup sweep: {swept} tasks failed, {removed} expired sessions removed")
        return swept

    async def shutdown(self) -> None:
        """Trip every live job and wait for them to unwind."""
        handles = self._registry.handles()
        for handle in handles:
            handle.stop_reason = SHUTDOWN_CANCEL_REASON
            handle.token.cancel()
            if handle.job is not None and not handle.job.done():
                handle.job.cancel()
        for handle in handles:
            if handle.job is not None:
                await asyncio.gather(handle.job, return_exceptions=True)

    # ------------------------------------------------------------------
    # Session credential
    # ------------------------------------------------------------------

    async def save_session(self, token: str, cookie: str, ttl: Optional[int] = None) -> UpstreamSession:
        """Store a fresh upstream credential."""
        now = _now_ts()
        session = UpstreamSession(
            auth_key=uuid.uuid4().hex,
            token=token,
            cookie=cookie,
            created_at=now,
            expires_at=now + int(ttl or get_settings().upstream.session_ttl),
        )
        await self.db.asave_session(session)
        logger.info(f"[Lifecycle] Stored upstream session expiring at {session.expires_at}")
        return session

    async def _require_session(self) -> UpstreamSession:
        credential = await self.db.aget_valid_session()
        if credential is None:
            raise AuthError("No valid upstream login session found. Please log in first.")
        await self.upstream.probe(credential)
        return credential

    # ------------------------------------------------------------------
    # Task operations
    # ------------------------------------------------------------------

    async def create_task(
        self,
        prompt: str,
        target_count: int = 30,
        provider_config: Optional[ProviderConfig] = None,
        target_account: Optional[AccountCandidate] = None,
    ) -> str:
        """Insert a pending task and spawn its job. Raises AuthError without a live session."""
        credential = await self._require_session()
        config = provider_config or ProviderConfig()

        task_id = str(uuid.uuid4())
        await self.db.acreate_task(task_id, prompt, target_count)
        logger.info(
            f"[Lifecycle] Task {task_id} created: '{prompt}' target={target_count} "
            f"providers=({config.keyword_provider.value}, {config.reasoning_provider.value}, "
            f"{config.embedding_provider.value})"
        )

        token = CancellationToken(probe=lambda: self._cancel_requested(task_id))
        handle = JobHandle(task_id=task_id, token=token)
        self._registry.register(handle)
        handle.job = asyncio.create_task(
            self._run_job(task_id, prompt, target_count, config, credential, token, target_account),
            name=f"insight-task-{task_id}",
        )
        return task_id

    async def _cancel_requested(self, task_id: str) -> bool:
        status = await self.db.aget_task_status(task_id)
        return status is None or status in (TaskStatus.CANCELLING, TaskStatus.CANCELLED)

    async def _finish(self, task_id: str, status: TaskStatus, reason: Optional[str]) -> None:
        try:
            await self.db.aset_task_status(task_id, status, reason)
        except StorageError as e:
            logger.error(f"[Lifecycle] Task {task_id}: failed to record {status.value}: {e}")

    async def _run_job(
        self,
        task_id: str,
        prompt: str,
        target_count: int,
        config: ProviderConfig,
        credential: UpstreamSession,
        token: CancellationToken,
        pinned: Optional[AccountCandidate],
    ) -> None:
        capabilities: Optional[Capabilities] = None
        try:
            if await token.is_cancelled():
                await self._finish(task_id, TaskStatus.CANCELLED, RESOLVER_CANCEL_REASON)
                return

            await self.db.aset_task_status(task_id, TaskStatus.PROCESSING)
            policy = ScalingPolicy.for_target(target_count)
            logger.info(
                f"[Lifecycle] Task {task_id}: scaling keywords={policy.keyword_count} "
                f"accounts={policy.account_limit} articles={policy.article_limit}"
            )

            capabilities = self._capabilities_factory(config, self.client, self.gate)
            resolver = SearchSpaceResolver(self.db, self.upstream, capabilities.keyword_agent, self.gate)
            accounts = await resolver.resolve(
                task_id, prompt, policy, config.search_speed, credential, token, pinned=pinned
            )

            engine = ScanAndFilterEngine(
                self.db, self.upstream, capabilities.embedder, capabilities.judge, self.gate
            )
            outcome = await engine.run(task_id, prompt, target_count, accounts, policy, credential, token)

            await self._finish(task_id, TaskStatus.COMPLETED, outcome.completion_reason)
            logger.info(f"[Lifecycle] Task {task_id} completed: {outcome.completion_reason}")
        except asyncio.CancelledError:
            handle = self._registry.get(task_id)
            reason = handle.stop_reason if handle is not None else RESOLVER_CANCEL_REASON
            logger.info(f"[Lifecycle] Task {task_id} interrupted: {reason}")
            await asyncio.shield(self._finish(task_id, TaskStatus.CANCELLED, reason))
            raise
        except TaskCancelled as e:
            logger.info(f"[Lifecycle] Task {task_id} cancelled: {e.reason}")
            await self._finish(task_id, TaskStatus.CANCELLED, e.reason)
        except Exception as e:
            logger.exception(f"[Lifecycle] Task {task_id} failed: {e}")
            reason = f"Unexpected Error: {e}. Log: {diagnostic_log_path()}"
            await self._finish(task_id, TaskStatus.FAILED, reason)
        finally:
            self._registry.remove(task_id)
            if capabilities is not None:
                await capabilities.aclose()

    async def wait_for(self, task_id: str) -> None:
        """Await the running job for task_id, if any."""
        await self._registry.wait(task_id)

    async def _require_task(self, task_id: str) -> InsightTask:
        task = await self.db.aget_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task

    async def get_task(self, task_id: str) -> TaskDetail:
        task = await self._require_task(task_id)
        articles = await self.db.alist_articles(task_id)
        return TaskDetail(task=task, articles=articles)

    async def list_tasks(self) -> List[InsightTask]:
        return await self.db.alist_tasks()

    async def cancel_task(self, task_id: str) -> InsightTask:
        """Request cooperative cancellation. Terminal tasks are left untouched."""
        task = await self._require_task(task_id)
        if task.status.is_terminal:
            logger.info(f"[Lifecycle] Task {task_id} already {task.status.value}, cancel ignored")
            return task

        if not await self.db.aset_task_status(task_id, TaskStatus.CANCELLING):
            logger.info(f"[Lifecycle] Task {task_id} finished before cancel, cancel ignored")
            return await self._require_task(task_id)
        if not self._registry.cancel(task_id):
            # no live job in this process
            await self.db.aset_task_status(task_id, TaskStatus.CANCELLED, RESOLVER_CANCEL_REASON)
        logger.info(f"[Lifecycle] Task {task_id} cancellation requested")
        return await self._require_task(task_id)

    async def delete_task(self, task_id: str) -> bool:
        """Stop any running job, then remove the task and its articles."""
        await self._require_task(task_id)
        handle = self._registry.get(task_id)
        if handle is not None:
            handle.token.cancel()
            if handle.job is not None and not handle.job.done():
                handle.job.cancel()
                await asyncio.gather(handle.job, return_exceptions=True)
        deleted = await self.db.adelete_task(task_id)
        logger.info(f"[Lifecycle] Task {task_id} deleted")
        return deleted

    # ------------------------------------------------------------------
    # Export / prefetch / render
    # ------------------------------------------------------------------

    async def export_task(
        self,
        task_id: str,
        target_dir: Union[str, Path],
        export_format: Union[ExportFormat, str] = ExportFormat.MARKDOWN,
        gateways: Optional[List[str]] = None,
        authorization: Optional[str] = None,
    ) -> ExportResult:
        renderer = self.renderer if ExportFormat(export_format) == ExportFormat.PDF else self._renderer
        exporter = BulkExporter(self.db, self.client, self.images, renderer, self.gate)
        return await exporter.export(task_id, target_dir, export_format, gateways, authorization)

    async def prefetch_task(
        self,
        task_id: str,
        gateways: Optional[List[str]] = None,
        authorization: Optional[str] = None,
    ) -> PrefetchResult:
        prefetcher = Prefetcher(self.db, self.client, self.images, self.gate)
        return await prefetcher.prefetch(task_id, gateways, authorization)

    async def render_pdf(self, html: str, filename: Optional[str] = None) -> bytes:
        return await render_single_pdf(html, self.images, self.renderer, filename)

    async def test_provider(
        self,
        kind: Union[ProviderKind, str],
        config: Optional[ProviderConfig] = None,
    ) -> Dict[str, Any]:
        """Send one short completion to the provider and report the outcome."""
        llm = get_llm(ProviderKind(kind), config, self.client)
        try:
            return await check_connection(llm)
        finally:
            await llm.aclose()
