"""In-memory registry of running task jobs keyed by task id."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional
import asyncio

from pipeline.cancellation import RESOLVER_CANCEL_REASON, CancellationToken


@dataclass
class JobHandle:
    """Background job plus its cancellation token."""

    task_id: str
    token: CancellationToken
    job: Optional[asyncio.Task] = None
    stop_reason: str = RESOLVER_CANCEL_REASON


class JobRegistry:
    """Tracks at most one live job per task id."""

    def __init__(self) -> None:
        self._jobs: Dict[str, JobHandle] = {}
        self._lock = Lock()

    def register(self, handle: JobHandle) -> bool:
        """Register handle once. Returns False when a job for the id already exists."""
        with self._lock:
            if handle.task_id in self._jobs:
                return False
            self._jobs[handle.task_id] = handle
            return True

    def get(self, task_id: str) -> Optional[JobHandle]:
        with self._lock:
            return self._jobs.get(task_id)

    def cancel(self, task_id: str) -> bool:
        """Trip the job's token. Returns True when a live job was found."""
        with self._lock:
            handle = self._jobs.get(task_id)
        if handle is None:
            return False
        handle.token.cancel()
        return True

    def remove(self, task_id: str) -> Optional[JobHandle]:
        with self._lock:
            return self._jobs.pop(task_id, None)

    def handles(self) -> List[JobHandle]:
        with self._lock:
            return list(self._jobs.values())

    def size(self) -> int:
        with self._lock:
            return len(self._jobs)

    async def wait(self, task_id: str) -> None:
        """Await the job for task_id if one is running."""
        handle = self.get(task_id)
        if handle is None or handle.job is None:
            return
        await asyncio.gather(handle.job, return_exceptions=True)
