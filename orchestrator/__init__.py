"""Task lifecycle orchestration."""

from .registry import JobHandle, JobRegistry
from .service import Capabilities, TaskLifecycleManager, build_capabilities

__all__ = [
    "Capabilities",
    "JobHandle",
    "JobRegistry",
    "TaskLifecycleManager",
    "build_capabilities",
]
