"""
Official Account Platform Scraper
公众号后台接口: 账号搜索 (searchbiz) 与发文列表 (appmsgpublish)

两个接口都返回 base_resp.ret, 非 0 表示凭证失效或请求失败。
发文列表的 publish_page 是一个 JSON 字符串, 其中每条 publish_info
又是一个 (HTML 转义过的) JSON 字符串。
"""
from typing import Any, Dict, List, Optional
import json
import logging

import httpx

from models import AccountCandidate, SourceArticle, UpstreamSession
from utils.exceptions import AuthError, UpstreamError
from .base import BaseScraper


logger = logging.getLogger(__name__)


def _base_ret(payload: Dict[str, Any]) -> tuple:
    base_resp = payload.get("base_resp") or {}
    ret = base_resp.get("ret")
    message = base_resp.get("err_msg") or "Unknown error"
    return (int(ret) if isinstance(ret, (int, float)) else None), message


def parse_accounts(payload: Dict[str, Any]) -> List[AccountCandidate]:
    """解析 searchbiz 的 list[] (缺少 fakeid / nickname 的条目跳过)"""
    accounts = []
    for item in payload.get("list") or []:
        fakeid = item.get("fakeid")
        nickname = item.get("nickname")
        if isinstance(fakeid, str) and isinstance(nickname, str):
            accounts.append(AccountCandidate(external_id=fakeid, display_name=nickname))
    return accounts


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def parse_publish_page(payload: Dict[str, Any]) -> List[SourceArticle]:
    """
    解析 appmsgpublish 响应

    优先读取 appmsg_info[] (新格式, 时间取 sent_info.time),
    不存在时回退到 appmsgex[] (旧格式, 每篇自带 create_time)。
    """
    raw_page = payload.get("publish_page")
    if not isinstance(raw_page, str):
        return []
    try:
        page = json.loads(raw_page)
    except ValueError:
        return []

    articles: List[SourceArticle] = []
    for item in page.get("publish_list") or []:
        info_str = item.get("publish_info")
        if not isinstance(info_str, str):
            continue
        try:
            info = json.loads(info_str.replace("&quot;", '"'))
        except ValueError:
            continue

        shared_time = _as_int((info.get("sent_info") or {}).get("time")) or 0

        appmsg_info = info.get("appmsg_info")
        if isinstance(appmsg_info, list):
            for msg in appmsg_info:
                title = msg.get("title")
                url = msg.get("content_url")
                if not isinstance(title, str) or not isinstance(url, str):
                    continue
                digest = msg.get("digest")
                articles.append(SourceArticle(
                    title=title,
                    digest=digest if isinstance(digest, str) else "",
                    url=url.replace("\\", ""),
                    create_time=shared_time,
                ))
            continue

        for msg in info.get("appmsgex") or []:
            title = msg.get("title")
            digest = msg.get("digest")
            link = msg.get("link")
            create_time = _as_int(msg.get("create_time"))
            if not (isinstance(title, str) and isinstance(digest, str) and isinstance(link, str)):
                continue
            if create_time is None:
                continue
            articles.append(SourceArticle(title=title, digest=digest, url=link, create_time=create_time))

    return articles


class MpScraper(BaseScraper):
    """
    公众号平台抓取器

    所有请求都携带凭证中的 token (query) 与 cookie (header)。

    Example:
        async with MpScraper(http_client) as scraper:
            accounts = await scraper.search_accounts("供应链", 20, session)
    """

    SEARCH_PATH = "/cgi-bin/searchbiz"
    PUBLISH_PATH = "/cgi-bin/appmsgpublish"

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        super().__init__(http_client)
        self.base_url = (base_url or self.settings.upstream.base_url).rstrip("/")

    @property
    def name(self) -> str:
        return "MP Platform"

    async def _get_json(self, path: str, params: Dict[str, Any], credential: UpstreamSession) -> Dict[str, Any]:
        query = dict(params)
        query.update({"token": credential.token, "lang": "zh_CN", "f": "json", "ajax": "1"})
        session = self._get_session()
        try:
            response = await session.get(
                f"{self.base_url}{path}",
                params=query,
                headers={"Cookie": credential.cookie, "User-Agent": self.settings.general.user_agent},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to {path} failed: {e}", source=self.name) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"{path} JSON Error: {e} | Body: {response.text[:200]}",
                source=self.name,
            ) from e
        if not isinstance(payload, dict):
            raise UpstreamError(f"{path} returned a non-object payload", source=self.name)
        return payload

    async def search_accounts(self, query: str, limit: int, credential: UpstreamSession) -> List[AccountCandidate]:
        """按关键词搜索账号; base_resp.ret != 0 时抛出 UpstreamError"""
        payload = await self._get_json(
            self.SEARCH_PATH,
            {"action": "search_biz", "begin": "0", "count": str(limit), "query": query},
            credential,
        )
        ret, message = _base_ret(payload)
        if ret is not None and ret != 0:
            logger.error(f"[{self.name}] Search Biz Error: ret={ret} msg={message}")
            raise UpstreamError(f"Search Error ({ret}): {message}", source=self.name, ret=ret)

        accounts = parse_accounts(payload)
        self._log_search(query, len(accounts))
        return accounts

    async def list_articles(self, account_id: str, limit: int, credential: UpstreamSession) -> List[SourceArticle]:
        """
        获取账号最近发文

        base_resp.ret != 0 只记录警告并返回空列表, 单个账号失败不影响任务。
        """
        payload = await self._get_json(
            self.PUBLISH_PATH,
            {
                "sub": "list",
                "search_field": "null",
                "begin": "0",
                "count": str(limit),
                "fakeid": account_id,
                "type": "101_1",
            },
            credential,
        )
        ret, message = _base_ret(payload)
        if ret is not None and ret != 0:
            logger.warning(f"[{self.name}] Article fetch error for fakeid {account_id}: ret={ret} msg={message}")
            return []

        articles = parse_publish_page(payload)
        if not articles:
            logger.debug(f"[{self.name}] Fetched 0 articles for fakeid {account_id}")
        return articles

    async def probe(self, credential: UpstreamSession) -> None:
        """用一次最小的账号搜索检查凭证是否仍然有效"""
        try:
            payload = await self._get_json(
                self.SEARCH_PATH,
                {"action": "search_biz", "begin": "0", "count": "1", "query": "test"},
                credential,
            )
        except UpstreamError as e:
            raise AuthError(f"Session validation failed: {e.message}") from e

        ret, message = _base_ret(payload)
        if ret is not None and ret != 0:
            raise AuthError(f"Session invalid ({ret}): {message}", {"ret": ret})
