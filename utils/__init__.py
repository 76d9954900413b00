"""
Utils Module
通用工具函数
"""
from .logger import setup_logger, configure_logging, diagnostic_log_path
from .exceptions import (
    InsightError,
    ConfigurationError,
    AuthError,
    UpstreamError,
    StorageError,
    TaskNotFoundError,
    EmbeddingError,
    LLMError,
    FetchError,
    RenderError,
)

__all__ = [
    "setup_logger",
    "configure_logging",
    "diagnostic_log_path",
    "InsightError",
    "ConfigurationError",
    "AuthError",
    "UpstreamError",
    "StorageError",
    "TaskNotFoundError",
    "EmbeddingError",
    "LLMError",
    "FetchError",
    "RenderError",
]
