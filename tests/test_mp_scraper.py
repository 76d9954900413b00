"""
Tests for the official-account platform scraper (httpx.MockTransport, no network)
"""
import json

import httpx
import pytest

from scrapers import MpScraper, parse_publish_page
from utils.exceptions import AuthError, UpstreamError
from utils.http import build_http_client


def _publish_payload(infos):
    page = {"publish_list": [{"publish_info": info} for info in infos]}
    return {"base_resp": {"ret": 0}, "publish_page": json.dumps(page)}


def _client(handler) -> httpx.AsyncClient:
    return build_http_client(transport=httpx.MockTransport(handler))


class TestParsing:
    def test_appmsg_info_uses_shared_time(self):
        info = json.dumps({
            "sent_info": {"time": 1700000123},
            "appmsg_info": [
                {"title": "供应链金融", "digest": "d1", "content_url": "http:\\/\\/mp.weixin.qq.com\\/s\\/a"},
                {"title": "no url"},
            ],
        }).replace('"', "&quot;")

        articles = parse_publish_page(_publish_payload([info]))

        assert len(articles) == 1
        assert articles[0].title == "供应链金融"
        assert articles[0].url == "http://mp.weixin.qq.com/s/a"
        assert articles[0].create_time == 1700000123

    def test_appmsgex_fallback_requires_fields(self):
        info = json.dumps({
            "appmsgex": [
                {"title": "t1", "digest": "d1", "link": "https://mp.weixin.qq.com/s/1", "create_time": 1700000001},
                {"title": "missing time", "digest": "d", "link": "https://mp.weixin.qq.com/s/2"},
            ],
        })

        articles = parse_publish_page(_publish_payload([info]))

        assert [a.url for a in articles] == ["https://mp.weixin.qq.com/s/1"]
        assert articles[0].create_time == 1700000001

    def test_bad_publish_page_is_empty(self):
        assert parse_publish_page({"base_resp": {"ret": 0}, "publish_page": "{not json"}) == []
        assert parse_publish_page({"base_resp": {"ret": 0}}) == []


class TestMpScraper:
    @pytest.mark.asyncio
    async def test_search_accounts_sends_credential(self, credential):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["cookie"] = request.headers.get("cookie")
            return httpx.Response(200, json={
                "base_resp": {"ret": 0},
                "list": [
                    {"fakeid": "f1", "nickname": "供应链观察"},
                    {"fakeid": "f2"},
                ],
            })

        async with _client(handler) as client:
            scraper = MpScraper(client)
            accounts = await scraper.search_accounts("供应链", 20, credential)

        assert [(a.external_id, a.display_name) for a in accounts] == [("f1", "供应链观察")]
        assert seen["path"] == "/cgi-bin/searchbiz"
        assert seen["params"]["token"] == credential.token
        assert seen["params"]["query"] == "供应链"
        assert seen["params"]["count"] == "20"
        assert seen["cookie"] == credential.cookie

    @pytest.mark.asyncio
    async def test_search_error_raises(self, credential):
        def handler(request):
            return httpx.Response(200, json={"base_resp": {"ret": 200013, "err_msg": "freq control"}})

        async with _client(handler) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await MpScraper(client).search_accounts("kw", 5, credential)
        assert exc_info.value.ret == 200013

    @pytest.mark.asyncio
    async def test_list_articles_error_is_empty(self, credential):
        def handler(request):
            return httpx.Response(200, json={"base_resp": {"ret": 200003, "err_msg": "invalid session"}})

        async with _client(handler) as client:
            articles = await MpScraper(client).list_articles("f1", 20, credential)
        assert articles == []

    @pytest.mark.asyncio
    async def test_list_articles_parses_page(self, credential):
        info = json.dumps({
            "sent_info": {"time": 1700000500},
            "appmsg_info": [{"title": "t", "digest": "d", "content_url": "https://mp.weixin.qq.com/s/z"}],
        })

        def handler(request):
            assert request.url.path == "/cgi-bin/appmsgpublish"
            assert request.url.params["fakeid"] == "f1"
            return httpx.Response(200, json=_publish_payload([info]))

        async with _client(handler) as client:
            articles = await MpScraper(client).list_articles("f1", 20, credential)
        assert [a.url for a in articles] == ["https://mp.weixin.qq.com/s/z"]

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self, credential):
        def handler(request):
            return httpx.Response(200, text="<html>login</html>")

        async with _client(handler) as client:
            with pytest.raises(UpstreamError):
                await MpScraper(client).list_articles("f1", 20, credential)

    @pytest.mark.asyncio
    async def test_probe_rejects_invalid_session(self, credential):
        def handler(request):
            return httpx.Response(200, json={"base_resp": {"ret": 200003, "err_msg": "invalid session"}})

        async with _client(handler) as client:
            with pytest.raises(AuthError):
                await MpScraper(client).probe(credential)

    @pytest.mark.asyncio
    async def test_probe_accepts_valid_session(self, credential):
        def handler(request):
            return httpx.Response(200, json={"base_resp": {"ret": 0}, "list": []})

        async with _client(handler) as client:
            await MpScraper(client).probe(credential)
