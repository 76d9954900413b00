"""
Configuration Management Module
统一配置管理，实现 Provider / 存储 / 导出配置解耦
"""
from .settings import (
    Settings,
    get_settings,
    get_llm_settings,
    get_embedding_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "get_llm_settings",
    "get_embedding_settings",
]
