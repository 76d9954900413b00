"""
Storage Module
存储模块 - SQLite 持久化和缓存
"""
from .database import InsightDatabase
from .cache import (
    PageCache,
    AssetCache,
    CachedAsset,
    page_key,
    sniff_mime,
    is_valid_image,
    stripped_length,
    MIN_PAGE_TEXT_CHARS,
)

__all__ = [
    "InsightDatabase",
    "PageCache",
    "AssetCache",
    "CachedAsset",
    "page_key",
    "sniff_mime",
    "is_valid_image",
    "stripped_length",
    "MIN_PAGE_TEXT_CHARS",
]
