"""
Data Models
"""
from .schemas import (
    TaskStatus,
    SearchSpeed,
    ProviderKind,
    ExportFormat,
    AccountCandidate,
    SourceArticle,
    ProviderConfig,
    InsightTask,
    InsightArticle,
    TaskDetail,
    UpstreamSession,
    ExportResult,
    PrefetchStats,
    PrefetchResult,
)

__all__ = [
    "TaskStatus",
    "SearchSpeed",
    "ProviderKind",
    "ExportFormat",
    "AccountCandidate",
    "SourceArticle",
    "ProviderConfig",
    "InsightTask",
    "InsightArticle",
    "TaskDetail",
    "UpstreamSession",
    "ExportResult",
    "PrefetchStats",
    "PrefetchResult",
]
