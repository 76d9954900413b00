"""
Scrapers Module
上游平台抓取器
"""
from .base import BaseScraper
from .mp_scraper import MpScraper, parse_accounts, parse_publish_page

__all__ = [
    "BaseScraper",
    "MpScraper",
    "parse_accounts",
    "parse_publish_page",
]
