"""Shared runtime wiring for web/CLI entrypoints."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import httpx

from config import get_settings
from orchestrator import TaskLifecycleManager
from storage import InsightDatabase
from utils.http import build_http_client


class Runtime:
    """Process-wide database, HTTP client and lifecycle manager."""

    def __init__(
        self,
        db: InsightDatabase,
        http_client: httpx.AsyncClient,
        manager: TaskLifecycleManager,
        owns_resources: bool = True,
    ) -> None:
        self.db = db
        self.http_client = http_client
        self.manager = manager
        self._owns_resources = owns_resources

    @classmethod
    def from_settings(cls, db_path: Optional[str] = None) -> "Runtime":
        path = Path(db_path or get_settings().storage.db_path)
        db = InsightDatabase(path)
        client = build_http_client()
        return cls(db=db, http_client=client, manager=TaskLifecycleManager(db, client))

    @classmethod
    def wrap(cls, manager: TaskLifecycleManager) -> "Runtime":
        """Use an externally built manager; its resources stay with the caller."""
        return cls(db=manager.db, http_client=manager.client, manager=manager, owns_resources=False)

    async def start(self) -> None:
        await self.manager.startup()

    async def close(self) -> None:
        await self.manager.shutdown()
        if self._owns_resources:
            await self.http_client.aclose()
            self.db.close()
